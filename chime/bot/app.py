"""Telegram application factory and scheduler wiring."""

from __future__ import annotations

import logging

from telegram.ext import Application, CommandHandler

from chime.bot.handlers import handle_command
from chime.config import settings
from chime.notifications.countdown import CountdownTicker
from chime.notifications.dispatcher import NotificationDispatcher
from chime.notifications.telegram_messenger import TelegramMessenger
from chime.scheduler.registry import JobRegistry
from chime.scheduler.store import ScheduleStore
from chime.scheduler.sweeper import ReconciliationSweeper

logger = logging.getLogger(__name__)

COMMANDS = ("addtask", "canceltask", "settimezone", "setupchannel", "mytasks", "help", "start")


def build_services(app: Application) -> dict:
    """Create the store, timers and delivery pipeline for ``app``."""
    store = ScheduleStore.instance()
    messenger = TelegramMessenger(app.bot)
    ticker = CountdownTicker()
    dispatcher = NotificationDispatcher(store, messenger, ticker)
    registry = JobRegistry(store, dispatcher)
    sweeper = ReconciliationSweeper(store, registry)
    return {
        "store": store,
        "messenger": messenger,
        "ticker": ticker,
        "dispatcher": dispatcher,
        "registry": registry,
        "sweeper": sweeper,
    }


async def _post_init(app: Application) -> None:
    """Called after the Application is fully initialized (event loop running)."""
    services = build_services(app)
    app.bot_data.update(services)

    services["registry"].start()
    # Cold start: every stored task lost its timer with the previous process.
    await services["sweeper"].start()
    logger.info("Chime ready with %d live reminder(s)", len(services["registry"]))


async def _post_shutdown(app: Application) -> None:
    """Called during graceful shutdown."""
    sweeper = app.bot_data.get("sweeper")
    if sweeper is not None:
        await sweeper.stop()
    ticker = app.bot_data.get("ticker")
    if ticker is not None:
        await ticker.stop_all()
    registry = app.bot_data.get("registry")
    if registry is not None:
        registry.stop()


def create_app() -> Application:
    """Build and configure the Telegram application."""
    app = Application.builder().token(settings.telegram_bot_token).build()

    app.add_handler(CommandHandler(list(COMMANDS), handle_command))

    app.post_init = _post_init
    app.post_shutdown = _post_shutdown

    return app
