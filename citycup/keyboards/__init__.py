from citycup.keyboards.callbacks import (
    MainMenuCb,
    AdminPanelCb,
    CompetitionCb,
    CityCb,
    RoundCb,
    WinnerCb,
    ImportCb,
    CertCb,
    RegCb,
    MyCertCb,
)
from citycup.keyboards.main_menu import participant_main_menu, admin_main_menu, back_to_main
from citycup.keyboards.registration_kb import (
    competition_choice_kb,
    city_choice_kb,
    cancel_registration_kb,
    my_certificates_kb,
)
from citycup.keyboards.admin_kb import (
    competition_list_kb,
    competition_detail_kb,
    city_card_kb,
    round_card_kb,
    back_to_round_kb,
    back_to_competition_kb,
    round_created_kb,
    confirm_action_kb,
    winners_kb,
    import_kb,
    certificate_menu_kb,
    cancel_input_kb,
)

__all__ = [
    # callbacks
    "MainMenuCb", "AdminPanelCb", "CompetitionCb", "CityCb", "RoundCb",
    "WinnerCb", "ImportCb", "CertCb", "RegCb", "MyCertCb",
    # main menu
    "participant_main_menu", "admin_main_menu", "back_to_main",
    # registration
    "competition_choice_kb", "city_choice_kb", "cancel_registration_kb", "my_certificates_kb",
    # admin
    "competition_list_kb", "competition_detail_kb", "city_card_kb", "round_card_kb",
    "back_to_round_kb", "back_to_competition_kb", "round_created_kb", "confirm_action_kb", "winners_kb", "import_kb",
    "certificate_menu_kb", "cancel_input_kb",
]
