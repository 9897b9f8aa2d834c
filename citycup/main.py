"""
CityCup bot process.

Startup order: logging, schema check, dispatcher (error hook, middlewares,
routers), then long polling until SIGINT / SIGTERM.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from sqlalchemy.exc import SQLAlchemyError

from citycup.config import settings
from citycup.middlewares import AdminMiddleware, DatabaseMiddleware, RateLimitMiddleware
from citycup.models.base import Base, engine

# ── Handlers ──────────────────────────────────────────────────────────────────
from citycup.handlers.common import router as common_router
from citycup.handlers.registration import router as registration_router
from citycup.handlers.admin.panel import router as admin_panel_router
from citycup.handlers.admin.rounds import router as admin_rounds_router
from citycup.handlers.admin.certificates import router as admin_certificates_router
from citycup.handlers.fallback import router as fallback_router

# Dispatch order; the fallback router swallows whatever is left and stays last
ROUTERS = (
    common_router,
    registration_router,
    admin_panel_router,
    admin_rounds_router,
    admin_certificates_router,
    fallback_router,
)

logger = logging.getLogger("citycup")


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


async def prepare_database() -> None:
    """Create missing tables. An unreachable database stops the process."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError) as e:
        logger.critical(
            "❌ Database unavailable at %s: %s\n"
            "   For a local run set DATABASE_URL=sqlite+aiosqlite:///./citycup.db",
            settings.DATABASE_URL.split("@")[-1],   # strip user:password
            e,
        )
        sys.exit(1)
    logger.info("Schema ready (%d tables).", len(Base.metadata.tables))


async def _on_error(event: ErrorEvent) -> None:
    logger.exception("Update %s failed: %s", event.update.update_id, event.exception)
    query = event.update.callback_query
    if query is None:
        return
    try:
        await query.answer("⚠️ Something went wrong. Please try again.", show_alert=True)
    except TelegramAPIError as e:
        logger.debug("Callback %s left unanswered: %s", query.id, e)


def build_dispatcher() -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())
    dp.errors.register(_on_error)

    # Outer to inner: session first, the rest read it from `data`
    for middleware in (DatabaseMiddleware(), AdminMiddleware(), RateLimitMiddleware()):
        dp.update.middleware(middleware)

    dp.include_routers(*ROUTERS)
    return dp


def _install_signal_handlers(dp: Dispatcher) -> None:
    loop = asyncio.get_running_loop()

    def stop() -> None:
        logger.info("Stop signal received.")
        loop.create_task(dp.stop_polling())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop)
        except NotImplementedError:
            # No loop signal handlers on Windows; Ctrl+C still raises KeyboardInterrupt
            pass


async def main() -> None:
    await prepare_database()

    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN),
    )
    dp = build_dispatcher()
    _install_signal_handlers(dp)

    logger.info("CityCup bot polling (admins: %d).", len(settings.admin_ids_list))
    try:
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            handle_signals=False,
        )
    finally:
        await bot.session.close()
        await engine.dispose()
        logger.info("CityCup bot stopped.")


def run() -> None:
    configure_logging()
    asyncio.run(main())


if __name__ == "__main__":
    run()
