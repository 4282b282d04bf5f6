"""
hourglass.bot.__main__ — Entry point for ``python -m hourglass.bot``
====================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine, ensure tables exist and seed the houses.
4. Create the HourglassBot and hand it config + engine.
5. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m hourglass.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from hourglass.bot.core import HourglassBot
from hourglass.config import load_config
from hourglass.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("hourglass")


def main() -> None:
    """Bootstrap and run the Hourglass bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config()
    logger.info(
        "Config loaded — Community: %s, server timezone: %s",
        cfg.community_name, cfg.server_timezone,
    )

    # 3. Database (tables + houses, idempotent).
    engine = create_db_engine()
    init_db(engine, houses=cfg.houses)

    # 4. Bot.
    bot = HourglassBot(cfg=cfg, engine=engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Hourglass bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
