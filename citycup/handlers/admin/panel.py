"""
Admin panel: competitions, their city tracks and the city completion card.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import CityCupError
from citycup.keyboards import (
    AdminPanelCb, CityCb, CompetitionCb,
    admin_main_menu, back_to_competition_kb, city_card_kb, competition_detail_kb, competition_list_kb,
    cancel_input_kb, confirm_action_kb, round_created_kb,
)
from citycup.middlewares import IsAdmin
from citycup.models.models import City, CompetitionStatus, RoundStatus
from citycup.services import (
    get_certificate_counts, get_city_status, get_competition, list_competition_cities,
    create_round, list_competitions, list_templates, mark_city_finished, reopen_city,
    set_competition_status, set_registration_open,
)
from citycup.services.lookups import require
from citycup.states import AdminRoundStates

logger = logging.getLogger(__name__)
router = Router(name="admin_panel")
router.callback_query.filter(IsAdmin())


# ── Admin home (back) ─────────────────────────────────────────────────────────

@router.callback_query(AdminPanelCb.filter(F.action == "back"))
async def cq_admin_home(callback: CallbackQuery) -> None:
    await callback.message.edit_text(
        "⚡ *Admin panel*\n\nChoose a section:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=admin_main_menu(),
    )
    await callback.answer()


# ── Competitions ──────────────────────────────────────────────────────────────

@router.callback_query(AdminPanelCb.filter(F.action == "competitions"))
@router.callback_query(CompetitionCb.filter(F.action == "list"))
async def cq_competition_list(callback: CallbackQuery, session: AsyncSession) -> None:
    competitions = await list_competitions(session)
    text = "🏆 *Competitions*" if competitions else "🏆 *Competitions*\n\n_None yet._"
    await callback.message.edit_text(
        text, parse_mode=ParseMode.MARKDOWN, reply_markup=competition_list_kb(competitions)
    )
    await callback.answer()


async def _show_competition(callback: CallbackQuery, session: AsyncSession, competition_id: int) -> None:
    c = await get_competition(session, competition_id, load_relations=False)
    if not c:
        await callback.answer("Competition not found.", show_alert=True)
        return
    tracks = await list_competition_cities(session, c.id)
    finished = sum(1 for cc in tracks if cc.is_finished)
    reg = "🔓 open" if c.registration_open else "🔒 closed"
    desc = f"\n_{c.description}_\n" if c.description else ""
    text = (
        f"{c.status_emoji} *{c.name}*{desc}\n"
        f"📌 Status: `{c.status}`\n"
        f"📝 Registration: {reg}\n"
        f"📍 Cities finished: `{finished}/{len(tracks)}`"
    )
    await callback.message.edit_text(
        text, parse_mode=ParseMode.MARKDOWN, reply_markup=competition_detail_kb(c, tracks)
    )


@router.callback_query(CompetitionCb.filter(F.action == "view"))
async def cq_competition_view(
    callback: CallbackQuery,
    callback_data: CompetitionCb,
    session: AsyncSession,
) -> None:
    await _show_competition(callback, session, callback_data.cid)
    await callback.answer()


@router.callback_query(CompetitionCb.filter(F.action == "status"))
async def cq_competition_status(
    callback: CallbackQuery,
    callback_data: CompetitionCb,
    session: AsyncSession,
) -> None:
    try:
        await set_competition_status(session, callback_data.cid, callback_data.value, admin_id=callback.from_user.id)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await callback.answer(f"{CompetitionStatus.EMOJI.get(callback_data.value, '')} Status updated")
    await _show_competition(callback, session, callback_data.cid)


@router.callback_query(CompetitionCb.filter(F.action == "reg"))
async def cq_competition_registration(
    callback: CallbackQuery,
    callback_data: CompetitionCb,
    session: AsyncSession,
) -> None:
    try:
        await set_registration_open(
            session, callback_data.cid, callback_data.value == "1", admin_id=callback.from_user.id
        )
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await callback.answer("✅ Registration updated")
    await _show_competition(callback, session, callback_data.cid)


@router.callback_query(CompetitionCb.filter(F.action == "certs"))
async def cq_certificate_counts(
    callback: CallbackQuery,
    callback_data: CompetitionCb,
    session: AsyncSession,
) -> None:
    counts = await get_certificate_counts(session, callback_data.cid)
    if not counts:
        await callback.answer("No certificates generated yet.", show_alert=True)
        return

    names = {t.id: t.name for t in await list_templates(session, active_only=False)}
    lines = ["📊 *Certificates by round*", "─────────────────"]
    for c in counts:
        lines.append(
            f"Round `{c.round_id}` · {names.get(c.template_id, c.template_id)}: "
            f"`{c.total}` total · 📄{c.generated} ✅{c.released} ⛔️{c.revoked}"
        )
    await callback.message.edit_text(
        "\n".join(lines)[:4000],
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_competition_kb(callback_data.cid),
    )
    await callback.answer()


# ── City card ─────────────────────────────────────────────────────────────────

async def _show_city(callback: CallbackQuery, session: AsyncSession, competition_id: int, city_id: int) -> None:
    status = await get_city_status(session, competition_id, city_id)
    city = await require(session, City, city_id)

    lines = [f"📍 *{city.name}*", ""]
    if status.is_finished:
        lines.append(f"🏁 Finished `{status.finished_at:%d.%m.%Y %H:%M}`")
    else:
        lines.append("🟢 Open")
    lines.append(f"🏅 Finale: {'yes' if status.has_finale else 'not created'}"
                 f"{' · completed' if status.finale_completed else ''}")
    lines.append(f"🥇 Winners selected: `{status.winner_count}`")
    if status.rounds:
        lines.append("")
        for r in status.rounds:
            emoji = RoundStatus.EMOJI.get(r.status, "❓")
            lines.append(f"{emoji} R{r.round_number} {r.name}: 👥{r.participants} 📝{r.scored} 🏅{r.winners}")
    if status.competition_completed:
        lines.append("\n🏆 _Competition completed._")

    await callback.message.edit_text(
        "\n".join(lines),
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=city_card_kb(competition_id, city_id, status),
    )


@router.callback_query(CityCb.filter(F.action == "view"))
async def cq_city_view(
    callback: CallbackQuery, callback_data: CityCb, session: AsyncSession, state: FSMContext
) -> None:
    await state.clear()
    try:
        await _show_city(callback, session, callback_data.cid, callback_data.city)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await callback.answer()


@router.callback_query(CityCb.filter(F.action.in_({"finish_confirm", "reopen_confirm"})))
async def cq_city_confirm(callback: CallbackQuery, callback_data: CityCb) -> None:
    finishing = callback_data.action == "finish_confirm"
    text = (
        "🏁 *Finish this city?*\n\nResults will be written and registration closed."
        if finishing else
        "↩️ *Reopen this city?*\n\nIts results will be removed and registration reopened."
    )
    await callback.message.edit_text(
        text,
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=confirm_action_kb(
            yes_cb=CityCb(
                action="finish" if finishing else "reopen", cid=callback_data.cid, city=callback_data.city
            ).pack(),
            no_cb=CityCb(action="view", cid=callback_data.cid, city=callback_data.city).pack(),
        ),
    )
    await callback.answer()


@router.callback_query(CityCb.filter(F.action.in_({"finish", "reopen"})))
async def cq_city_transition(callback: CallbackQuery, callback_data: CityCb, session: AsyncSession) -> None:
    transition = mark_city_finished if callback_data.action == "finish" else reopen_city
    try:
        await transition(session, callback_data.cid, callback_data.city, admin_id=callback.from_user.id)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return
    await callback.answer("🏁 City finished" if callback_data.action == "finish" else "↩️ City reopened")
    await _show_city(callback, session, callback_data.cid, callback_data.city)


# ── New round ─────────────────────────────────────────────────────────────────

@router.callback_query(CityCb.filter(F.action.in_({"new_round", "new_finale"})))
async def cq_city_new_round(callback: CallbackQuery, callback_data: CityCb, state: FSMContext) -> None:
    finale = callback_data.action == "new_finale"
    await state.set_state(AdminRoundStates.new_round)
    await state.update_data(cid=callback_data.cid, city=callback_data.city, finale=finale)
    await callback.message.edit_text(
        f"✏️ Name of the new {'finale' if finale else 'round'}:\n\n"
        f"_The round number is assigned automatically. Round 1 enrols everyone registered in the city._",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(CityCb(action="view", cid=callback_data.cid, city=callback_data.city).pack()),
    )
    await callback.answer()


@router.message(AdminRoundStates.new_round, IsAdmin())
async def msg_new_round_name(message: Message, state: FSMContext, session: AsyncSession) -> None:
    data = await state.get_data()
    cid, city_id = int(data["cid"]), int(data["city"])
    try:
        r = await create_round(
            session, cid, city_id, message.text or "",
            is_finale=bool(data["finale"]), admin_id=message.from_user.id,
        )
    except CityCupError as e:
        await message.answer(
            f"⚠️ {e}\n\nTry another name:",
            reply_markup=cancel_input_kb(CityCb(action="view", cid=cid, city=city_id).pack()),
        )
        return

    await state.clear()
    await message.answer(
        f"✅ *{r.display_name}* created.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=round_created_kb(r.id, cid, city_id),
    )
