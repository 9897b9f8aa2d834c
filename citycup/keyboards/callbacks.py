"""
Centralized CallbackData factories.
Telegram limits callback_data to 64 bytes — all prefixes are kept short.
"""
from aiogram.filters.callback_data import CallbackData


class MainMenuCb(CallbackData, prefix="mm"):
    action: str           # main | register | my_certs


class AdminPanelCb(CallbackData, prefix="adm"):
    action: str           # back | competitions


class CompetitionCb(CallbackData, prefix="cmp"):
    action: str           # list | view | status | reg | certs
    cid: int = 0          # competition id
    value: str = ""       # target status / "1"|"0" for registration


class CityCb(CallbackData, prefix="cty"):
    action: str           # view | new_round | new_finale | finish_confirm | finish
                          # reopen_confirm | reopen
    cid: int = 0
    city: int = 0


class RoundCb(CallbackData, prefix="rnd"):
    action: str           # view | board | upload | promote | clear_confirm | clear
                          # winners | import | export | archive | unarchive | certs
    rid: int = 0


class WinnerCb(CallbackData, prefix="win"):
    action: str           # toggle | save | reset
    rid: int = 0
    rpid: int = 0         # round participation id


class ImportCb(CallbackData, prefix="imp"):
    action: str           # inc | dec | confirm
    rid: int = 0          # target round id
    city: int = 0


class CertCb(CallbackData, prefix="crt"):
    action: str           # menu | gen | rel | rev
    rid: int = 0
    tpl: int = 0          # template id (0 = any, release/revoke only)
    winners: bool = False


class RegCb(CallbackData, prefix="reg"):
    action: str           # comp | city
    cid: int = 0
    city: int = 0


class MyCertCb(CallbackData, prefix="myc"):
    action: str           # view
    cert: int = 0
