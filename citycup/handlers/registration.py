"""
Participant self-registration and "My certificates".

Flow:
  Register → choose competition → choose city → full name → email
           → MI ID (optional) → saved ✅
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.fsm.context import FSMContext
from aiogram.types import BufferedInputFile, CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from citycup.errors import CityCupError
from citycup.keyboards import (
    MainMenuCb, MyCertCb, RegCb,
    back_to_main, cancel_registration_kb, city_choice_kb, competition_choice_kb,
    my_certificates_kb, participant_main_menu,
)
from citycup.models.models import CertificateStatus, ParticipationSource
from citycup.services import (
    get_certificate, get_competition, get_user_by_telegram, get_user_certificates,
    list_competition_cities, list_open_competitions, register_participation,
    render_certificate, upsert_user,
)
from citycup.states import RegistrationStates

logger = logging.getLogger(__name__)
router = Router(name="registration")


# ── Entry: "Register" button ──────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "register"))
async def cq_start_registration(
    callback: CallbackQuery,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    competitions = await list_open_competitions(session)
    if not competitions:
        await callback.answer("No competitions are open for registration.", show_alert=True)
        return

    await state.set_state(RegistrationStates.choose_competition)
    await callback.message.edit_text(
        "📝 *Choose a competition:*",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=competition_choice_kb(competitions),
    )
    await callback.answer()


# ── Step 1: competition ───────────────────────────────────────────────────────

@router.callback_query(RegCb.filter(F.action == "comp"), RegistrationStates.choose_competition)
async def cq_competition_selected(
    callback: CallbackQuery,
    callback_data: RegCb,
    session: AsyncSession,
    state: FSMContext,
) -> None:
    c = await get_competition(session, callback_data.cid, load_relations=False)
    if not c or not c.registration_open:
        await callback.answer("Registration for this competition is closed.", show_alert=True)
        return

    tracks = [
        cc for cc in await list_competition_cities(session, c.id)
        if cc.registration_open and not cc.is_finished
    ]
    if not tracks:
        await callback.answer("No city is accepting registrations.", show_alert=True)
        return

    await state.update_data(competition_id=c.id, competition_name=c.name)
    await state.set_state(RegistrationStates.choose_city)
    desc_line = f"\n_{c.description}_\n" if c.description else ""
    await callback.message.edit_text(
        f"🏆 *{c.name}*{desc_line}\n📍 Choose your city:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=city_choice_kb(c.id, tracks),
    )
    await callback.answer()


# ── Step 2: city ──────────────────────────────────────────────────────────────

@router.callback_query(RegCb.filter(F.action == "city"), RegistrationStates.choose_city)
async def cq_city_selected(
    callback: CallbackQuery,
    callback_data: RegCb,
    state: FSMContext,
) -> None:
    await state.update_data(city_id=callback_data.city)
    await state.set_state(RegistrationStates.enter_full_name)
    await callback.message.edit_text(
        "👤 Enter your *full name* as it should appear on the certificate:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_registration_kb(),
    )
    await callback.answer()


# ── Step 3: full name ─────────────────────────────────────────────────────────

@router.message(RegistrationStates.enter_full_name)
async def msg_full_name(message: Message, state: FSMContext) -> None:
    name = message.text.strip() if message.text else ""
    if len(name) < 3 or len(name) > 255:
        await message.answer(
            "⚠️ Please enter your full name (3–255 characters):",
            reply_markup=cancel_registration_kb(),
        )
        return

    await state.update_data(full_name=name)
    await state.set_state(RegistrationStates.enter_email)
    await message.answer(
        f"👤 *{name}*\n\n📧 Enter your *email*:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_registration_kb(),
    )


# ── Step 4: email ─────────────────────────────────────────────────────────────

@router.message(RegistrationStates.enter_email)
async def msg_email(message: Message, state: FSMContext) -> None:
    email = message.text.strip().lower() if message.text else ""
    if "@" not in email or "." not in email.split("@")[-1] or " " in email:
        await message.answer("⚠️ That does not look like an email. Try again:", reply_markup=cancel_registration_kb())
        return

    await state.update_data(email=email)
    await state.set_state(RegistrationStates.enter_mi_id)
    await message.answer(
        "🪪 Enter your *MI ID* if you have one, or `-` to skip:",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=cancel_registration_kb(),
    )


# ── Step 5: MI ID → save ──────────────────────────────────────────────────────

@router.message(RegistrationStates.enter_mi_id)
async def msg_mi_id(message: Message, session: AsyncSession, state: FSMContext) -> None:
    raw = message.text.strip() if message.text else ""
    mi_id = None if raw in ("", "-") else raw[:50]
    data = await state.get_data()

    try:
        user = await upsert_user(
            session,
            email=data["email"],
            full_name=data["full_name"],
            mi_id=mi_id,
            telegram_id=message.from_user.id,
        )
        await register_participation(
            session, user.id, data["competition_id"], data["city_id"], ParticipationSource.USER_SELF
        )
    except CityCupError as e:
        await state.clear()
        await message.answer(f"⚠️ {e}", reply_markup=participant_main_menu())
        return

    await state.clear()
    logger.info("User %d registered for competition %d city %d", user.id, data["competition_id"], data["city_id"])
    await message.answer(
        f"✅ *You are registered!*\n\n"
        f"🏆 {data['competition_name']}\n"
        f"👤 {data['full_name']}\n\n"
        f"Your certificate will appear under *My certificates* once it is released.",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=participant_main_menu(),
    )


# ── My certificates ───────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "my_certs"))
async def cq_my_certificates(callback: CallbackQuery, session: AsyncSession) -> None:
    user = await get_user_by_telegram(session, callback.from_user.id)
    certificates = await get_user_certificates(session, user.id) if user else []
    if not certificates:
        await callback.message.edit_text(
            "📜 *My certificates*\n\n_No released certificates yet._",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=back_to_main(),
        )
        await callback.answer()
        return

    await callback.message.edit_text(
        f"📜 *My certificates* — `{len(certificates)}`",
        parse_mode=ParseMode.MARKDOWN,
        reply_markup=my_certificates_kb(certificates),
    )
    await callback.answer()


@router.callback_query(MyCertCb.filter(F.action == "view"))
async def cq_view_certificate(
    callback: CallbackQuery,
    callback_data: MyCertCb,
    session: AsyncSession,
) -> None:
    user = await get_user_by_telegram(session, callback.from_user.id)
    cert = await get_certificate(session, callback_data.cert)
    # Only the owner, and only while released
    if not user or not cert or cert.participation.user_id != user.id or cert.status != CertificateStatus.RELEASED:
        await callback.answer("Certificate is not available.", show_alert=True)
        return

    rendered = await render_certificate(session, cert.id)
    if rendered.image:
        await callback.message.answer_photo(
            photo=BufferedInputFile(rendered.image, filename=f"{cert.certificate_number}.png"),
            caption=rendered.text,
            parse_mode=ParseMode.MARKDOWN,
        )
    else:
        await callback.message.answer(rendered.text, parse_mode=ParseMode.MARKDOWN)
    await callback.answer()
