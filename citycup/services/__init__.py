from citycup.services import audit_service
from citycup.services.competition_service import (
    upsert_user, get_user_by_telegram,
    create_competition, get_competition, list_competitions, list_open_competitions,
    set_competition_status, set_registration_open,
    create_city, list_cities, add_city_to_competition, list_competition_cities,
    register_participation, list_participations, get_user_participations,
)
from citycup.services.ranking_service import (
    competition_ranks, recalculate_round_ranks, ranked_entries,
)
from citycup.services.round_service import (
    create_round, get_round, get_round_details, get_round_leaderboard, list_rounds,
    update_round, delete_round, archive_round, unarchive_round,
    add_participant, remove_participant, get_eligible_participants,
)
from citycup.services.scoring_service import (
    parse_score_csv, upload_scores, update_score, clear_scores,
)
from citycup.services.promotion_service import promote_top, promote_participant
from citycup.services.winner_service import (
    select_winners, get_round_winners, get_available_winners, import_selected_winners,
)
from citycup.services.city_service import (
    get_city_status, mark_city_finished, reopen_city, get_results,
)
from citycup.services.certificate_service import (
    create_template, list_templates, archive_template,
    generate_for_competition, generate_for_round, generate_for_winners,
    release_certificate, release_certificates,
    release_for_round, release_for_competition, release_for_winners,
    revoke_certificate, revoke_for_competition, revoke_for_round, revoke_for_winners,
    preview_certificate, render_certificate, delete_certificate,
    get_certificate_counts, get_certificate, list_certificates, get_user_certificates,
)
from citycup.services.notification_service import (
    notify_certificate_released, notify_certificates_released,
)
from citycup.services.sheets_service import export_round_to_sheets
from citycup.services.qr_service import generate_qr_buffered, generate_qr_png, verify_url

__all__ = [
    "audit_service",
    # competitions, cities, participations
    "upsert_user", "get_user_by_telegram",
    "create_competition", "get_competition", "list_competitions", "list_open_competitions",
    "set_competition_status", "set_registration_open",
    "create_city", "list_cities", "add_city_to_competition", "list_competition_cities",
    "register_participation", "list_participations", "get_user_participations",
    # ranking
    "competition_ranks", "recalculate_round_ranks", "ranked_entries",
    # rounds
    "create_round", "get_round", "get_round_details", "get_round_leaderboard", "list_rounds",
    "update_round", "delete_round", "archive_round", "unarchive_round",
    "add_participant", "remove_participant", "get_eligible_participants",
    # scores
    "parse_score_csv", "upload_scores", "update_score", "clear_scores",
    # promotion
    "promote_top", "promote_participant",
    # winners
    "select_winners", "get_round_winners", "get_available_winners", "import_selected_winners",
    # city completion
    "get_city_status", "mark_city_finished", "reopen_city", "get_results",
    # certificates
    "create_template", "list_templates", "archive_template",
    "generate_for_competition", "generate_for_round", "generate_for_winners",
    "release_certificate", "release_certificates",
    "release_for_round", "release_for_competition", "release_for_winners",
    "revoke_certificate", "revoke_for_competition", "revoke_for_round", "revoke_for_winners",
    "preview_certificate", "render_certificate", "delete_certificate",
    "get_certificate_counts", "get_certificate", "list_certificates", "get_user_certificates",
    # notifications
    "notify_certificate_released", "notify_certificates_released",
    # sheets
    "export_round_to_sheets",
    # QR
    "generate_qr_buffered", "generate_qr_png", "verify_url",
]
