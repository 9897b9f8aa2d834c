"""
Admin authorization middleware.

Attaches `is_admin` and `is_superadmin` flags to handler data for all updates.
Routers restrict access with the IsAdmin / IsSuperAdmin filters below.
"""
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.filters import BaseFilter
from aiogram.types import CallbackQuery, Message, TelegramObject

from citycup.config import settings


class AdminMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = data.get("event_from_user")
        uid = user.id if user else None
        data["is_superadmin"] = settings.is_superadmin(uid)
        data["is_admin"] = bool(uid is not None and uid in settings.admin_ids_list)
        return await handler(event, data)


async def _deny(event: Message | CallbackQuery) -> None:
    if isinstance(event, Message):
        await event.answer("⛔️ Access denied.")
    elif isinstance(event, CallbackQuery):
        await event.answer("⛔️ Access denied.", show_alert=True)


class IsAdmin(BaseFilter):
    """Use on individual routers/handlers to restrict access to admins."""

    async def __call__(self, event: Message | CallbackQuery, is_admin: bool = False) -> bool:
        if not is_admin:
            await _deny(event)
        return is_admin


class IsSuperAdmin(BaseFilter):
    """Irreversible operations (e.g. clearing round scores)."""

    async def __call__(self, event: Message | CallbackQuery, is_superadmin: bool = False) -> bool:
        if not is_superadmin:
            await _deny(event)
        return is_superadmin
