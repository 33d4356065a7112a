import asyncio
import logging

from infrastructure.bootstrap import build_registry, configure_logging
from infrastructure.config import Settings, load_settings
from interfaces.telegram.handlers import create_telegram_bot


logger = logging.getLogger(__name__)


async def run(settings: Settings) -> None:
    registry = build_registry(settings)
    bot = create_telegram_bot(settings.telegram_token, registry)
    try:
        await bot.polling(non_stop=True)
    finally:
        await registry.close()
        await bot.close_session()


def main() -> None:
    settings = load_settings()
    configure_logging(settings)
    if not settings.telegram_token:
        raise RuntimeError("TELEGRAM_TOKEN environment variable is not set.")

    logger.info("Starting Telegram bot")
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
