"""
Flood protection.

Sliding-window limiter per Telegram user. Admins get a wider window because
score uploads and bulk certificate actions come in bursts. A throttled user
is told once per window; further updates in the same window are dropped.
"""
from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from typing import Any, Awaitable, Callable, Deque, Dict, Set

from aiogram import BaseMiddleware
from aiogram.exceptions import TelegramBadRequest
from aiogram.types import TelegramObject, Update

logger = logging.getLogger(__name__)

THROTTLE_TEXT = "⏳ Too many requests. Please wait a moment and try again."


class RateLimitMiddleware(BaseMiddleware):
    """
    Parameters
    ----------
    rate       : requests allowed per user per window
    admin_rate : same for admins (needs AdminMiddleware registered first)
    period     : window size in seconds
    """

    def __init__(self, rate: int = 30, admin_rate: int = 120, period: float = 60.0) -> None:
        self._rate       = rate
        self._admin_rate = admin_rate
        self._period     = period
        self._hits: Dict[int, Deque[float]] = defaultdict(deque)
        self._warned: Set[int] = set()

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = data.get("event_from_user")
        if user is None:
            return await handler(event, data)

        now  = time.monotonic()
        hits = self._hits[user.id]
        while hits and now - hits[0] > self._period:
            hits.popleft()
        if not hits:
            self._warned.discard(user.id)

        limit = self._admin_rate if data.get("is_admin") else self._rate
        if len(hits) >= limit:
            if user.id not in self._warned:
                self._warned.add(user.id)
                logger.info("Throttling user %d (%d updates in %.0fs)", user.id, len(hits), self._period)
                await self._notify(data.get("event_update"))
            return None

        hits.append(now)
        return await handler(event, data)

    @staticmethod
    async def _notify(update: Update | None) -> None:
        if update is None:
            return
        try:
            if update.callback_query:
                await update.callback_query.answer(THROTTLE_TEXT, show_alert=True)
            elif update.message:
                await update.message.answer(THROTTLE_TEXT)
        except TelegramBadRequest as e:
            logger.debug("Throttle notice not delivered: %s", e)
