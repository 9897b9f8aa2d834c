"""
Certificates of a round: generate per template, release (with push notices)
and revoke with a mandatory reason. The 🏅 toggle narrows every action to
the round's winners.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import CityCupError
from citycup.keyboards import CertCb, back_to_round_kb, cancel_input_kb, certificate_menu_kb
from citycup.middlewares import IsAdmin
from citycup.services import (
    generate_for_round, generate_for_winners, get_round, list_templates,
    notify_certificates_released, release_for_round, release_for_winners,
    revoke_for_round, revoke_for_winners,
)
from citycup.services.certificate_service import recipients
from citycup.states import AdminCertificateStates

logger = logging.getLogger(__name__)
router = Router(name="admin_certificates")
router.callback_query.filter(IsAdmin())


def _scope_label(winners: bool) -> str:
    return "🏅 winners" if winners else "👥 all participants"


# ── Menu ──────────────────────────────────────────────────────────────────────

@router.callback_query(CertCb.filter(F.action == "menu"))
async def cq_certificate_menu(
    callback: CallbackQuery,
    callback_data: CertCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    await state.clear()
    r = await get_round(session, callback_data.rid)
    if not r:
        await callback.answer("Round not found.", show_alert=True)
        return

    templates = await list_templates(session, competition_id=r.competition_id)
    note = "" if templates else "\n\n_No active templates for this competition._"
    await callback.message.edit_text(
        f"📜 *Certificates* — {r.display_name}\n"
        f"Scope: {_scope_label(callback_data.winners)}{note}",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=certificate_menu_kb(r.id, templates, callback_data.winners),
    )
    await callback.answer()


# ── Generate ──────────────────────────────────────────────────────────────────

@router.callback_query(CertCb.filter(F.action == "gen"))
async def cq_generate(callback: CallbackQuery, callback_data: CertCb, session: AsyncSession) -> None:
    generate = generate_for_winners if callback_data.winners else generate_for_round
    try:
        report = await generate(session, callback_data.rid, callback_data.tpl, admin_id=callback.from_user.id)
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    await callback.answer()
    await callback.message.answer(
        f"🖨 *Certificates generated* ({_scope_label(callback_data.winners)})\n"
        f"🆕 New: `{report.created}`\n"
        f"♻️ Regenerated: `{report.updated}`",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_round_kb(callback_data.rid),
    )


# ── Release ───────────────────────────────────────────────────────────────────

@router.callback_query(CertCb.filter(F.action == "rel"))
async def cq_release(callback: CallbackQuery, callback_data: CertCb, session: AsyncSession) -> None:
    release = release_for_winners if callback_data.winners else release_for_round
    try:
        outcome = await release(
            session, callback_data.rid, template_id=callback_data.tpl or None, admin_id=callback.from_user.id
        )
    except CityCupError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    if not outcome.affected:
        await callback.answer("Nothing to release.", show_alert=True)
        return

    await callback.answer("⏳ Releasing…")
    delivered = await notify_certificates_released(
        callback.bot, await recipients(session, outcome.certificate_ids)
    )
    await callback.message.answer(
        f"✅ *Released:* `{outcome.affected}`\n📨 Notified: `{delivered}`",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_round_kb(callback_data.rid),
    )


# ── Revoke (reason required) ──────────────────────────────────────────────────

@router.callback_query(CertCb.filter(F.action == "rev"))
async def cq_revoke_start(callback: CallbackQuery, callback_data: CertCb, state: FSMContext) -> None:
    await state.set_state(AdminCertificateStates.revoke_reason)
    await state.update_data(round_id=callback_data.rid, winners=callback_data.winners, tpl=callback_data.tpl)
    await callback.message.edit_text(
        f"⛔️ *Revoke released certificates* ({_scope_label(callback_data.winners)})\n\n"
        f"Type the reason. It is stored with every revoked certificate:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_input_kb(
            CertCb(action="menu", rid=callback_data.rid, winners=callback_data.winners).pack()
        ),
    )
    await callback.answer()


@router.message(AdminCertificateStates.revoke_reason, IsAdmin())
async def msg_revoke_reason(message: Message, session: AsyncSession, state: FSMContext) -> None:
    data     = await state.get_data()
    round_id = data["round_id"]
    revoke   = revoke_for_winners if data["winners"] else revoke_for_round

    try:
        outcome = await revoke(
            session,
            round_id,
            message.text or "",
            template_id=data["tpl"] or None,
            admin_id=message.from_user.id,
        )
    except CityCupError as e:
        await message.answer(
            f"⚠️ {e}",
            reply_markup=cancel_input_kb(CertCb(action="menu", rid=round_id, winners=data["winners"]).pack()),
        )
        return

    await state.clear()
    await message.answer(
        f"⛔️ *Revoked:* `{outcome.affected}`",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=back_to_round_kb(round_id),
    )
