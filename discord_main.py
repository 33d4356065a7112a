from infrastructure.bootstrap import build_registry, configure_logging
from infrastructure.config import load_settings
from interfaces.discord.handlers import create_discord_bot


def main() -> None:
    settings = load_settings()
    configure_logging(settings)
    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    bot = create_discord_bot(build_registry(settings))
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
