"""Chime bot entry point."""

import logging

from chime.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Start the reminder bot on Telegram."""
    from chime.bot.app import create_app

    if not settings.telegram_bot_token:
        logger.error("TELEGRAM_BOT_TOKEN is not set")
        raise SystemExit(1)

    logger.info("Starting Chime on Telegram (db=%s)...", settings.database_path)
    app = create_app()
    app.run_polling()


if __name__ == "__main__":
    main()
