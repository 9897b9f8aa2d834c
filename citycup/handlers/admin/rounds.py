"""
Round control panel — the organisers' desk for one round of one city.

UX flow:
  City card → round → card with context-aware buttons
    → ⬆️ upload a CSV of scores (FSM document input)
    → ⏭ promote top N into the next round (FSM text input)
    → 🏅 tick winners of a finale (toggle keyboard, order of taps = position)
    → 📥 import other cities' winners (➖/➕ counter per city)
    → 🧹 clear scores (superadmins only) · 🗄 archive · 📊 export

Picks and counters live in FSM data until the admin saves them, so nothing
touches the database until 💾 / 📥 is pressed.
"""
import logging
from typing import Dict

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from google.auth.exceptions import GoogleAuthError
from gspread.exceptions import GSpreadException
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.config import settings
from citycup.errors import CityCupError
from citycup.keyboards import (
    ImportCb, RoundCb, WinnerCb,
    back_to_round_kb, cancel_input_kb, confirm_action_kb, import_kb, round_card_kb, winners_kb,
)
from citycup.middlewares import IsAdmin, IsSuperAdmin
from citycup.models.models import QualifiedBy
from citycup.services import (
    archive_round, clear_scores, export_round_to_sheets, get_available_winners,
    get_round_details, get_round_winners, import_selected_winners, parse_score_csv,
    promote_top, select_winners, unarchive_round, upload_scores,
)
from citycup.states import AdminRoundStates

logger = logging.getLogger(__name__)
router = Router(name="admin_rounds")
router.callback_query.filter(IsAdmin())

MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}
QUALIFIED_MARK = {QualifiedBy.AUTOMATIC: "", QualifiedBy.MANUAL: " ✋"}


# ── Round card ────────────────────────────────────────────────────────────────

async def _show_round(
    callback: CallbackQuery,
    session: AsyncSession,
    round_id: int,
    is_superadmin: bool = False,
) -> None:
    detail = await get_round_details(session, round_id)
    r      = detail.round
    winners = sum(1 for p in detail.participants if p.is_winner)
    date_line = f"📅 `{r.round_date:%d.%m.%Y}`\n" if r.round_date else ""

    text = (
        f"{r.status_emoji} *{r.display_name}*\n"
        f"🏆 {detail.competition_name} · 📍 {detail.city_name}\n"
        f"{date_line}"
        f"━━━━━━━━━━━━━━━━━━\n"
        f"📌 Status: `{r.status}`\n"
        f"👥 Participants: `{detail.participant_count}`\n"
        f"📝 Scored: `{detail.scored_count}`\n"
    )
    if r.is_finale:
        text += f"🏅 Winners: `{winners}`\n"

    await callback.message.edit_text(
        text,
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=round_card_kb(r, is_superadmin=is_superadmin, sheets_enabled=settings.sheets_enabled),
    )


@router.callback_query(RoundCb.filter(F.action == "view"))
async def cq_round_view(
    callback: CallbackQuery,
    callback_data: RoundCb,
    session: AsyncSession,
    state: FSMContext,
    is_superadmin: bool = False,
) -> None:
    await state.clear()
    try:
        await _show_round(callback, session, callback_data.rid, is_superadmin)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await callback.answer()


# ── Leaderboard ───────────────────────────────────────────────────────────────

@router.callback_query(RoundCb.filter(F.action == "board"))
async def cq_round_leaderboard(
    callback: CallbackQuery,
    callback_data: RoundCb,
    session: AsyncSession,
) -> None:
    try:
        detail = await get_round_details(session, callback_data.rid)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    lines = [f"📋 *{detail.round.display_name}* — {detail.city_name}", "─────────────────"]
    if not detail.participants:
        lines.append("_No participants yet._")
    for p in detail.participants:
        rank  = f"{p.rank_in_round}." if p.rank_in_round else "—"
        score = f"`{p.score:g}`" if p.score is not None else "_no score_"
        medal = f" {MEDALS.get(p.winner_position, '🏅')}" if p.is_winner else ""
        lines.append(f"{rank} {p.full_name}{QUALIFIED_MARK.get(p.qualified_by, '')} · {score}{medal}")

    await callback.message.edit_text(
        "\n".join(lines)[:4000],
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_round_kb(callback_data.rid),
    )
    await callback.answer()


# ── Score upload (CSV document) ───────────────────────────────────────────────

@router.callback_query(RoundCb.filter(F.action == "upload"))
async def cq_upload_start(callback: CallbackQuery, callback_data: RoundCb, state: FSMContext) -> None:
    await state.set_state(AdminRoundStates.upload_csv)
    await state.update_data(round_id=callback_data.rid)
    await callback.message.edit_text(
        "⬆️ *Upload scores*\n\n"
        "Send a `.csv` file with a header row:\n"
        "`mi_id,email,score,notes`\n\n"
        "_Either mi\\_id or email identifies the participant. "
        "Participants that already have a score are skipped._",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(RoundCb(action="view", rid=callback_data.rid).pack()),
    )
    await callback.answer()


@router.message(AdminRoundStates.upload_csv, F.document, IsAdmin())
async def msg_upload_document(message: Message, session: AsyncSession, state: FSMContext) -> None:
    data     = await state.get_data()
    round_id = data["round_id"]
    back     = cancel_input_kb(RoundCb(action="view", rid=round_id).pack())

    buf = await message.bot.download(message.document)
    try:
        text = buf.read().decode("utf-8-sig")
    except UnicodeDecodeError:
        await message.answer("⚠️ The file must be UTF-8 encoded. Send it again:", reply_markup=back)
        return

    try:
        rows   = parse_score_csv(text)
        report = await upload_scores(session, round_id, rows, admin_id=message.from_user.id)
    except CityCupError as e:
        await message.answer(f"⚠️ {e}", reply_markup=back)
        return

    await state.clear()
    lines = [
        "✅ *Upload finished*",
        f"Rows: `{report.total}`",
        f"✅ Saved: `{report.success}`",
        f"⏭ Skipped: `{report.skipped}`",
        f"❌ Failed: `{report.failed}`",
    ]
    if report.errors:
        lines.append("")
        lines.extend(f"• {err}" for err in report.errors[:20])
        if len(report.errors) > 20:
            lines.append(f"_…and {len(report.errors) - 20} more_")
    await message.answer(
        "\n".join(lines)[:4000],
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_round_kb(round_id),
    )


@router.message(AdminRoundStates.upload_csv, IsAdmin())
async def msg_upload_not_document(message: Message, state: FSMContext) -> None:
    data = await state.get_data()
    await message.answer(
        "⚠️ Please send the scores as a CSV *file*.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(RoundCb(action="view", rid=data["round_id"]).pack()),
    )


# ── Promote top N ─────────────────────────────────────────────────────────────

@router.callback_query(RoundCb.filter(F.action == "promote"))
async def cq_promote_start(
    callback: CallbackQuery,
    callback_data: RoundCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    try:
        detail = await get_round_details(session, callback_data.rid)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    if not detail.scored_count:
        await callback.answer("No scores in this round yet.", show_alert=True)
        return

    await state.set_state(AdminRoundStates.promote_count)
    await state.update_data(round_id=callback_data.rid)
    await callback.message.edit_text(
        f"⏭ *Promote top N*\n\n"
        f"Scored participants: `{detail.scored_count}`\n"
        f"Type how many to move into the next round:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(RoundCb(action="view", rid=callback_data.rid).pack()),
    )
    await callback.answer()


@router.message(AdminRoundStates.promote_count, IsAdmin())
async def msg_promote_count(message: Message, session: AsyncSession, state: FSMContext) -> None:
    data     = await state.get_data()
    round_id = data["round_id"]
    back     = cancel_input_kb(RoundCb(action="view", rid=round_id).pack())

    raw = message.text.strip() if message.text else ""
    if not raw.isdigit():
        await message.answer("⚠️ Enter a whole number:", reply_markup=back)
        return

    try:
        result = await promote_top(session, round_id, int(raw), admin_id=message.from_user.id)
    except CityCupError as e:
        await message.answer(f"⚠️ {e}", reply_markup=back)
        return

    await state.clear()
    text = f"✅ Promoted `{result.promoted}` of top `{result.requested}` to the next round."
    if result.already_present:
        text += f"\n_{result.already_present} were already there._"
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=back_to_round_kb(round_id))


# ── Clear scores (superadmin) ─────────────────────────────────────────────────

@router.callback_query(RoundCb.filter(F.action == "clear_confirm"), IsSuperAdmin())
async def cq_clear_confirm(callback: CallbackQuery, callback_data: RoundCb) -> None:
    await callback.message.edit_text(
        "🧹 *Clear ALL scores of this round?*\n\nRanks and winner marks go too. This cannot be undone.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=confirm_action_kb(
            yes_cb=RoundCb(action="clear", rid=callback_data.rid).pack(),
            no_cb=RoundCb(action="view", rid=callback_data.rid).pack(),
        ),
    )
    await callback.answer()


@router.callback_query(RoundCb.filter(F.action == "clear"), IsSuperAdmin())
async def cq_clear_scores(callback: CallbackQuery, callback_data: RoundCb, session: AsyncSession) -> None:
    try:
        removed = await clear_scores(session, callback_data.rid, admin_id=callback.from_user.id)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await callback.answer(f"🧹 {removed} scores removed")
    await _show_round(callback, session, callback_data.rid, is_superadmin=True)


# ── Archive / unarchive ───────────────────────────────────────────────────────

@router.callback_query(RoundCb.filter(F.action.in_({"archive", "unarchive"})))
async def cq_round_archive(
    callback: CallbackQuery,
    callback_data: RoundCb,
    session: AsyncSession,
    is_superadmin: bool = False,
) -> None:
    action = archive_round if callback_data.action == "archive" else unarchive_round
    try:
        await action(session, callback_data.rid, admin_id=callback.from_user.id)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await callback.answer("🗄 Archived" if callback_data.action == "archive" else "📤 Restored")
    await _show_round(callback, session, callback_data.rid, is_superadmin)


# ── Winner selection ──────────────────────────────────────────────────────────

def _picks(data: dict) -> Dict[int, int]:
    # FSM storage may serialise keys to strings
    return {int(k): v for k, v in data.get("picks", {}).items()}


async def _show_winner_picker(
    callback: CallbackQuery,
    session: AsyncSession,
    round_id: int,
    picks: Dict[int, int],
) -> None:
    detail = await get_round_details(session, round_id)
    await callback.message.edit_text(
        f"🏅 *Select winners* — {detail.round.display_name}\n\n"
        f"Tap participants in finishing order. Selected: `{len(picks)}`",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=winners_kb(round_id, detail.participants, picks),
    )


@router.callback_query(RoundCb.filter(F.action == "winners"))
async def cq_winners_start(
    callback: CallbackQuery,
    callback_data: RoundCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    try:
        current = await get_round_winners(session, callback_data.rid)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    picks = {w.round_participation_id: w.winner_position or i for i, w in enumerate(current, start=1)}
    await state.set_state(AdminRoundStates.pick_winners)
    await state.update_data(round_id=callback_data.rid, picks={str(k): v for k, v in picks.items()})
    await _show_winner_picker(callback, session, callback_data.rid, picks)
    await callback.answer()


@router.callback_query(WinnerCb.filter(F.action == "toggle"), AdminRoundStates.pick_winners)
async def cq_winner_toggle(
    callback: CallbackQuery,
    callback_data: WinnerCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    picks = _picks(await state.get_data())
    if callback_data.rpid in picks:
        removed = picks.pop(callback_data.rpid)
        picks = {k: (v - 1 if v > removed else v) for k, v in picks.items()}
    else:
        picks[callback_data.rpid] = len(picks) + 1

    await state.update_data(picks={str(k): v for k, v in picks.items()})
    await _show_winner_picker(callback, session, callback_data.rid, picks)
    await callback.answer()


@router.callback_query(WinnerCb.filter(F.action == "reset"), AdminRoundStates.pick_winners)
async def cq_winner_reset(
    callback: CallbackQuery,
    callback_data: WinnerCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    await state.update_data(picks={})
    await _show_winner_picker(callback, session, callback_data.rid, {})
    await callback.answer("♻️ Cleared")


@router.callback_query(WinnerCb.filter(F.action == "save"), AdminRoundStates.pick_winners)
async def cq_winner_save(
    callback: CallbackQuery,
    callback_data: WinnerCb,
    session: AsyncSession,
    state: FSMContext,
    is_superadmin: bool = False,
) -> None:
    picks = _picks(await state.get_data())
    try:
        count = await select_winners(
            session,
            callback_data.rid,
            [{"round_participation_id": rpid, "position": pos} for rpid, pos in picks.items()],
            admin_id=callback.from_user.id,
        )
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    await state.clear()
    await callback.answer(f"🏅 {count} winners saved")
    await _show_round(callback, session, callback_data.rid, is_superadmin)


# ── Import winners of other cities ────────────────────────────────────────────

def _counts(data: dict) -> Dict[int, int]:
    return {int(k): v for k, v in data.get("counts", {}).items()}


async def _show_import(callback: CallbackQuery, session: AsyncSession, round_id: int, counts: Dict[int, int]) -> None:
    cities = await get_available_winners(session, round_id)
    total  = sum(counts.values())
    await callback.message.edit_text(
        f"📥 *Import city winners*\n\n"
        f"Choose how many of each city's winners to bring in.\n"
        f"Selected: `{total}`",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=import_kb(round_id, cities, counts),
    )


@router.callback_query(RoundCb.filter(F.action == "import"))
async def cq_import_start(
    callback: CallbackQuery,
    callback_data: RoundCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    try:
        cities = await get_available_winners(session, callback_data.rid)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    if not any(c.available for c in cities):
        await callback.answer("No winners from other cities are available.", show_alert=True)
        return

    await state.set_state(AdminRoundStates.import_counts)
    await state.update_data(round_id=callback_data.rid, counts={})
    await _show_import(callback, session, callback_data.rid, {})
    await callback.answer()


@router.callback_query(ImportCb.filter(F.action.in_({"inc", "dec"})), AdminRoundStates.import_counts)
async def cq_import_adjust(
    callback: CallbackQuery,
    callback_data: ImportCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    cities = {c.city_id: c for c in await get_available_winners(session, callback_data.rid)}
    city   = cities.get(callback_data.city)
    if not city:
        await callback.answer("City has no winners to import.", show_alert=True)
        return

    counts  = _counts(await state.get_data())
    current = counts.get(city.city_id, 0)
    step    = 1 if callback_data.action == "inc" else -1
    new     = max(0, min(city.available, current + step))
    if new == current:
        await callback.answer()
        return

    counts[city.city_id] = new
    await state.update_data(counts={str(k): v for k, v in counts.items()})
    await _show_import(callback, session, callback_data.rid, counts)
    await callback.answer()


@router.callback_query(ImportCb.filter(F.action == "confirm"), AdminRoundStates.import_counts)
async def cq_import_confirm(
    callback: CallbackQuery,
    callback_data: ImportCb,
    session: AsyncSession,
    state: FSMContext,
    is_superadmin: bool = False,
) -> None:
    counts = _counts(await state.get_data())
    try:
        result = await import_selected_winners(
            session,
            callback_data.rid,
            [{"city_id": city_id, "count": n} for city_id, n in counts.items() if n],
            admin_id=callback.from_user.id,
        )
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    await state.clear()
    await callback.answer(f"📥 {result.imported} winners imported")
    await _show_round(callback, session, callback_data.rid, is_superadmin)


# ── Google Sheets export ──────────────────────────────────────────────────────

@router.callback_query(RoundCb.filter(F.action == "export"))
async def cq_round_export(callback: CallbackQuery, callback_data: RoundCb, session: AsyncSession) -> None:
    if not settings.sheets_enabled:
        await callback.answer("Google Sheets is not configured.", show_alert=True)
        return
    try:
        detail = await get_round_details(session, callback_data.rid)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    await callback.answer("⏳ Exporting…")
    try:
        url = await export_round_to_sheets(detail)
    except (GSpreadException, GoogleAuthError, OSError) as e:
        logger.exception("Sheets export of round %d failed: %s", callback_data.rid, e)
        url = None
    text = f"📊 Exported: [open sheet]({url})" if url else "⚠️ Export failed. See the bot logs."
    await callback.message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=back_to_round_kb(callback_data.rid))
