"""
Main menu keyboards — participant vs. admin.
"""
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from citycup.keyboards.callbacks import AdminPanelCb, MainMenuCb


def participant_main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="📝 Register for a competition", callback_data=MainMenuCb(action="register").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="📜 My certificates",            callback_data=MainMenuCb(action="my_certs").pack()),
    )
    return builder.as_markup()


def admin_main_menu() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(text="🏆 Competitions",  callback_data=AdminPanelCb(action="competitions").pack()),
    )
    builder.row(
        InlineKeyboardButton(text="📜 My certificates", callback_data=MainMenuCb(action="my_certs").pack()),
    )
    return builder.as_markup()


def back_to_main() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="🔙 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()
