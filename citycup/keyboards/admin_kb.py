"""
Keyboards for the admin side: competitions → cities → rounds → certificates.
"""
from typing import Dict, List

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from citycup.keyboards.callbacks import (
    AdminPanelCb,
    CertCb,
    CityCb,
    CompetitionCb,
    ImportCb,
    RoundCb,
    WinnerCb,
)
from citycup.models.models import (
    CertificateTemplate,
    Competition,
    CompetitionCity,
    CompetitionStatus,
    RoundStatus,
)

STATUS_ACTIONS = {
    CompetitionStatus.ACTIVE:    "▶️ Activate",
    CompetitionStatus.COMPLETED: "🏁 Complete",
    CompetitionStatus.CANCELLED: "🚫 Cancel",
    CompetitionStatus.ARCHIVED:  "🗄 Archive",
}


# ── Competitions ──────────────────────────────────────────────────────────────

def competition_list_kb(competitions: List[Competition]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for c in competitions:
        builder.row(InlineKeyboardButton(
            text=f"{c.status_emoji} {c.name}",
            callback_data=CompetitionCb(action="view", cid=c.id).pack(),
        ))
    builder.row(InlineKeyboardButton(text="🔙 Back", callback_data=AdminPanelCb(action="back").pack()))
    return builder.as_markup()


def competition_detail_kb(c: Competition, tracks: List[CompetitionCity]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for cc in tracks:
        mark = "🏁" if cc.is_finished else "🟢"
        builder.row(InlineKeyboardButton(
            text=f"{mark} {cc.city.name}",
            callback_data=CityCb(action="view", cid=c.id, city=cc.city_id).pack(),
        ))

    transitions = CompetitionStatus.TRANSITIONS.get(c.status, [])
    buttons = [
        InlineKeyboardButton(
            text=STATUS_ACTIONS[s],
            callback_data=CompetitionCb(action="status", cid=c.id, value=s).pack(),
        )
        for s in transitions
    ]
    if buttons:
        builder.row(*buttons)

    if c.registration_open:
        reg = InlineKeyboardButton(
            text="🔒 Close registration",
            callback_data=CompetitionCb(action="reg", cid=c.id, value="0").pack(),
        )
    else:
        reg = InlineKeyboardButton(
            text="🔓 Open registration",
            callback_data=CompetitionCb(action="reg", cid=c.id, value="1").pack(),
        )
    builder.row(reg)
    builder.row(InlineKeyboardButton(
        text="📊 Certificate counts",
        callback_data=CompetitionCb(action="certs", cid=c.id).pack(),
    ))
    builder.row(InlineKeyboardButton(text="🔙 To list", callback_data=CompetitionCb(action="list").pack()))
    return builder.as_markup()


# ── City card ─────────────────────────────────────────────────────────────────

def city_card_kb(competition_id: int, city_id: int, status) -> InlineKeyboardMarkup:
    """`status` is a city_service.CityStatus."""
    builder = InlineKeyboardBuilder()
    for r in status.rounds:
        emoji = RoundStatus.EMOJI.get(r.status, "❓")
        finale = " 🏁" if r.is_finale else ""
        builder.row(InlineKeyboardButton(
            text=f"{emoji} R{r.round_number} · {r.name}{finale}",
            callback_data=RoundCb(action="view", rid=r.round_id).pack(),
        ))

    if not status.is_finished:
        buttons = [InlineKeyboardButton(
            text="➕ Round", callback_data=CityCb(action="new_round", cid=competition_id, city=city_id).pack()
        )]
        if not status.has_finale:
            buttons.append(InlineKeyboardButton(
                text="➕ Finale", callback_data=CityCb(action="new_finale", cid=competition_id, city=city_id).pack()
            ))
        builder.row(*buttons)

    if status.is_finished:
        builder.row(InlineKeyboardButton(
            text="↩️ Reopen city",
            callback_data=CityCb(action="reopen_confirm", cid=competition_id, city=city_id).pack(),
        ))
    elif status.can_mark_finished:
        builder.row(InlineKeyboardButton(
            text="🏁 Mark as finished",
            callback_data=CityCb(action="finish_confirm", cid=competition_id, city=city_id).pack(),
        ))

    builder.row(InlineKeyboardButton(
        text="🔙 Back", callback_data=CompetitionCb(action="view", cid=competition_id).pack()
    ))
    return builder.as_markup()


# ── Round card ────────────────────────────────────────────────────────────────

def round_card_kb(r, is_superadmin: bool = False, sheets_enabled: bool = False) -> InlineKeyboardMarkup:
    """Context-aware control panel for a single round."""
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="📋 Leaderboard", callback_data=RoundCb(action="board", rid=r.id).pack()))

    if r.status == RoundStatus.ARCHIVED:
        builder.row(InlineKeyboardButton(text="📤 Unarchive", callback_data=RoundCb(action="unarchive", rid=r.id).pack()))
    else:
        builder.row(
            InlineKeyboardButton(text="⬆️ Upload scores (CSV)", callback_data=RoundCb(action="upload", rid=r.id).pack()),
        )
        if r.is_finale:
            builder.row(
                InlineKeyboardButton(text="🏅 Select winners", callback_data=RoundCb(action="winners", rid=r.id).pack()),
            )
        else:
            builder.row(
                InlineKeyboardButton(text="⏭ Promote top N", callback_data=RoundCb(action="promote", rid=r.id).pack()),
            )
        builder.row(
            InlineKeyboardButton(text="📥 Import city winners", callback_data=RoundCb(action="import", rid=r.id).pack()),
        )
        if is_superadmin:
            builder.row(InlineKeyboardButton(
                text="🧹 Clear all scores", callback_data=RoundCb(action="clear_confirm", rid=r.id).pack()
            ))
        builder.row(InlineKeyboardButton(text="🗄 Archive", callback_data=RoundCb(action="archive", rid=r.id).pack()))

    builder.row(InlineKeyboardButton(text="📜 Certificates", callback_data=CertCb(action="menu", rid=r.id).pack()))
    if sheets_enabled:
        builder.row(InlineKeyboardButton(
            text="📊 Export to Google Sheets", callback_data=RoundCb(action="export", rid=r.id).pack()
        ))
    builder.row(InlineKeyboardButton(
        text="🔙 Back", callback_data=CityCb(action="view", cid=r.competition_id, city=r.city_id).pack()
    ))
    return builder.as_markup()


def back_to_round_kb(round_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 To round", callback_data=RoundCb(action="view", rid=round_id).pack()))
    return builder.as_markup()


def confirm_action_kb(yes_cb: str, no_cb: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="✅ Yes", callback_data=yes_cb),
        InlineKeyboardButton(text="❌ No", callback_data=no_cb),
    )
    return builder.as_markup()


# ── Winner selection (toggle in click order) ─────────────────────────────────

def winners_kb(round_id: int, rows, picks: Dict[int, int]) -> InlineKeyboardMarkup:
    """`rows` are round_service.ParticipantRow; `picks` maps round participation id → position."""
    builder = InlineKeyboardBuilder()
    for p in rows:
        pos = picks.get(p.round_participation_id)
        mark = f"🏅{pos}" if pos else "▫️"
        score = f"{p.score:g}" if p.score is not None else "—"
        builder.row(InlineKeyboardButton(
            text=f"{mark} {p.full_name} · {score}",
            callback_data=WinnerCb(action="toggle", rid=round_id, rpid=p.round_participation_id).pack(),
        ))
    builder.row(
        InlineKeyboardButton(text="💾 Save", callback_data=WinnerCb(action="save", rid=round_id).pack()),
        InlineKeyboardButton(text="♻️ Reset", callback_data=WinnerCb(action="reset", rid=round_id).pack()),
    )
    builder.row(InlineKeyboardButton(text="🔙 To round", callback_data=RoundCb(action="view", rid=round_id).pack()))
    return builder.as_markup()


# ── Winner import (count per city) ───────────────────────────────────────────

def import_kb(round_id: int, cities, counts: Dict[int, int]) -> InlineKeyboardMarkup:
    """`cities` are winner_service.CityWinners."""
    builder = InlineKeyboardBuilder()
    for c in cities:
        n = counts.get(c.city_id, 0)
        builder.row(
            InlineKeyboardButton(
                text="➖", callback_data=ImportCb(action="dec", rid=round_id, city=c.city_id).pack()
            ),
            InlineKeyboardButton(text=f"{c.city_name}: {n}/{c.available}", callback_data="noop"),
            InlineKeyboardButton(
                text="➕", callback_data=ImportCb(action="inc", rid=round_id, city=c.city_id).pack()
            ),
        )
    builder.row(InlineKeyboardButton(
        text="📥 Import", callback_data=ImportCb(action="confirm", rid=round_id).pack()
    ))
    builder.row(InlineKeyboardButton(text="🔙 To round", callback_data=RoundCb(action="view", rid=round_id).pack()))
    return builder.as_markup()


# ── Certificates ──────────────────────────────────────────────────────────────

def certificate_menu_kb(round_id: int, templates: List[CertificateTemplate], winners: bool) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for t in templates:
        builder.row(InlineKeyboardButton(
            text=f"🖨 Generate · {t.name}",
            callback_data=CertCb(action="gen", rid=round_id, tpl=t.id, winners=winners).pack(),
        ))
    builder.row(
        InlineKeyboardButton(
            text="✅ Release",
            callback_data=CertCb(action="rel", rid=round_id, winners=winners).pack(),
        ),
        InlineKeyboardButton(
            text="⛔️ Revoke",
            callback_data=CertCb(action="rev", rid=round_id, winners=winners).pack(),
        ),
    )
    toggle = "👥 All participants" if winners else "🏅 Winners only"
    builder.row(InlineKeyboardButton(
        text=toggle, callback_data=CertCb(action="menu", rid=round_id, winners=not winners).pack()
    ))
    builder.row(InlineKeyboardButton(text="🔙 To round", callback_data=RoundCb(action="view", rid=round_id).pack()))
    return builder.as_markup()


def cancel_input_kb(back_cb: str) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="❌ Cancel", callback_data=back_cb))
    return builder.as_markup()


def back_to_competition_kb(competition_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(
        text="🔙 Back", callback_data=CompetitionCb(action="view", cid=competition_id).pack()
    ))
    return builder.as_markup()


def round_created_kb(round_id: int, competition_id: int, city_id: int) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="📋 Open round", callback_data=RoundCb(action="view", rid=round_id).pack()),
        InlineKeyboardButton(
            text="📍 City", callback_data=CityCb(action="view", cid=competition_id, city=city_id).pack()
        ),
    )
    return builder.as_markup()
