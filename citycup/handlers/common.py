"""
Common handlers: /start, main menu routing.
"""
import logging

from aiogram import F, Router
from aiogram.enums import ParseMode
from aiogram.filters import CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery, Message

from citycup.keyboards import MainMenuCb, admin_main_menu, participant_main_menu

logger = logging.getLogger(__name__)
router = Router(name="common")

PARTICIPANT_HOME = "🏆 *CityCup*\n\nChoose an action:"
ADMIN_HOME       = "⚡ *Admin panel*\n\nChoose a section:"


# ── /start ────────────────────────────────────────────────────────────────────

@router.message(CommandStart())
async def cmd_start(message: Message, state: FSMContext, is_admin: bool) -> None:
    await state.clear()
    name = message.from_user.first_name
    if is_admin:
        text = (
            f"⚡ *Admin panel* — {name}\n\n"
            f"Run rounds city by city, pick winners\n"
            f"and issue certificates.\n\n"
            f"Choose a section:"
        )
        kb = admin_main_menu()
    else:
        text = (
            f"🏆 Welcome to *CityCup*, {name}!\n\n"
            f"Here you can:\n"
            f"• 📝 Register for a competition in your city\n"
            f"• 📜 Get your certificates once they are released\n\n"
            f"Choose an action:"
        )
        kb = participant_main_menu()
    await message.answer(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)


# ── Main menu callback ────────────────────────────────────────────────────────

@router.callback_query(MainMenuCb.filter(F.action == "main"))
async def cq_main_menu(callback: CallbackQuery, is_admin: bool, state: FSMContext) -> None:
    await state.clear()
    if is_admin:
        text, kb = ADMIN_HOME, admin_main_menu()
    else:
        text, kb = PARTICIPANT_HOME, participant_main_menu()
    await callback.message.edit_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=kb)
    await callback.answer()


@router.callback_query(F.data == "noop")
async def cq_noop(callback: CallbackQuery) -> None:
    await callback.answer()
