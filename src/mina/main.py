"""Mina entry point."""

import logging
import os
import sys

from dotenv import find_dotenv, load_dotenv

from .config import load_config


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    logging.basicConfig(
        level=os.getenv("MINA_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()

    from .logging import configure_logger
    from .telegram import TelegramBot

    configure_logger(config.data_dir / "logs")

    try:
        bot = TelegramBot(config=config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    bot.run()


if __name__ == "__main__":
    main()
