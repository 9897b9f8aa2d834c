"""
Participant keyboards: self-registration and "My certificates".
"""
from typing import List

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from citycup.keyboards.callbacks import MainMenuCb, MyCertCb, RegCb
from citycup.models.models import Certificate, Competition, CompetitionCity


def competition_choice_kb(competitions: List[Competition]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for c in competitions:
        builder.row(InlineKeyboardButton(
            text=f"🏆 {c.name}", callback_data=RegCb(action="comp", cid=c.id).pack()
        ))
    builder.row(InlineKeyboardButton(text="❌ Cancel", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()


def city_choice_kb(competition_id: int, tracks: List[CompetitionCity]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for cc in tracks:
        date = f" · {cc.event_date:%d.%m}" if cc.event_date else ""
        builder.row(InlineKeyboardButton(
            text=f"📍 {cc.city.name}{date}",
            callback_data=RegCb(action="city", cid=competition_id, city=cc.city_id).pack(),
        ))
    builder.row(InlineKeyboardButton(text="🔙 Back", callback_data=MainMenuCb(action="register").pack()))
    return builder.as_markup()


def cancel_registration_kb() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text="❌ Cancel", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()


def my_certificates_kb(certificates: List[Certificate]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for cert in certificates:
        builder.row(InlineKeyboardButton(
            text=f"📜 {cert.participation.competition.name} · {cert.template.name}",
            callback_data=MyCertCb(action="view", cert=cert.id).pack(),
        ))
    builder.row(InlineKeyboardButton(text="🔙 Main menu", callback_data=MainMenuCb(action="main").pack()))
    return builder.as_markup()
