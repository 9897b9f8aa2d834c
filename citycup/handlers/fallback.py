"""
Global fallback handler — included LAST in the dispatcher.

Answers any callback query no other router handled, e.g. stale keyboards
after a restart (MemoryStorage is wiped on redeploy).
"""
import logging

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.fsm.context import FSMContext
from aiogram.types import CallbackQuery

from citycup.keyboards import admin_main_menu, participant_main_menu

logger = logging.getLogger(__name__)
router = Router(name="fallback")


@router.callback_query()
async def cq_fallback(
    callback: CallbackQuery,
    state: FSMContext,
    is_admin: bool = False,
) -> None:
    await callback.answer("⚠️ This button has expired. Please start again.", show_alert=True)
    await state.clear()
    try:
        kb = admin_main_menu() if is_admin else participant_main_menu()
        await callback.message.edit_text(
            "🔄 *Session reset.* Back to the main menu:",
            parse_mode=ParseMode.MARKDOWN,
            reply_markup=kb,
        )
    except TelegramBadRequest as e:
        logger.debug("Fallback could not edit message: %s", e)
