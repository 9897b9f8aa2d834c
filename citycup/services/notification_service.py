"""
Participant notifications.

When certificates are released, their owners get a push message in their
Telegram chat. Users without a linked Telegram id are skipped.
"""
from __future__ import annotations

import logging
from typing import Iterable

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from citycup.models.models import Certificate

logger = logging.getLogger(__name__)


async def notify_certificate_released(bot: Bot, certificate: Certificate) -> bool:
    """
    Tell the owner their certificate is available.
    Silently swallows delivery errors (user may have blocked the bot).
    Expects participation.user, participation.competition and template loaded.
    """
    user = certificate.participation.user
    if not user.telegram_id:
        return False

    text = (
        f"━━━━━━━━━━━━━━━━━━━━━\n"
        f"📜 *Your certificate is ready!*\n"
        f"━━━━━━━━━━━━━━━━━━━━━\n\n"
        f"🏆 {certificate.participation.competition.name}\n"
        f"📄 {certificate.template.name}\n"
        f"🔖 `{certificate.certificate_number}`\n\n"
        f"Open *My certificates* to view it."
    )
    try:
        await bot.send_message(chat_id=user.telegram_id, text=text, parse_mode=ParseMode.MARKDOWN)
        return True
    except (TelegramForbiddenError, TelegramBadRequest) as e:
        logger.warning("Could not notify user telegram_id=%d: %s", user.telegram_id, e)
        return False


async def notify_certificates_released(bot: Bot, certificates: Iterable[Certificate]) -> int:
    """Broadcast release notices. Returns the number delivered."""
    count = 0
    for cert in certificates:
        if await notify_certificate_released(bot, cert):
            count += 1
    return count
