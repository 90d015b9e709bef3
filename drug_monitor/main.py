from __future__ import annotations

import argparse
import logging
import sys
import threading
from typing import List, Optional

from . import commands, config, db, scheduling
from .monitor import DrugMonitor
from .telegram_api import TelegramClient, TransportStartupError


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="drug-monitor",
        description="Poll gorzdrav for preferential drug availability and notify Telegram subscribers.",
    )
    parser.add_argument(
        "--check-now",
        action="store_true",
        help="run one check immediately instead of starting the cron schedule",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Validate configuration, start the bot and run the checks."""
    args = _parse_args(argv)
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config.validate()
    except config.ConfigError as e:
        logger.error("Configuration errors:")
        for err in e.errors:
            logger.error("  - %s", err)
        sys.exit(1)
    logger.info("Configuration is valid")

    logger.info("Initializing database…")
    db.init_db()

    client = TelegramClient(config.TELEGRAM_BOT_TOKEN)
    try:
        me = client.get_me()
    except TransportStartupError as e:
        logger.error("Could not start the Telegram bot: %s", e)
        sys.exit(1)
    logger.info("Bot started: @%s (id: %s)", me.get("username"), me.get("id"))

    monitor = DrugMonitor(config.DRUGS_TO_CHECK, transport=client)

    stop_event = threading.Event()
    t_commands = threading.Thread(
        target=commands.poll_commands,
        args=(client, stop_event),
        kwargs={"drugs": config.DRUGS_TO_CHECK},
        name="telegram-commands",
        daemon=True,
    )
    t_commands.start()

    scheduler = None
    try:
        if args.check_now:
            logger.info("Running a one-off check…")
            monitor.run_checks()
            logger.info("Check finished; the bot keeps serving commands")
        else:
            stats = db.get_statistics()
            logger.info("===================================")
            logger.info("Starting drug monitor")
            logger.info("Schedule: %s", config.CRON_SCHEDULE)
            logger.info("Drugs: %s", ", ".join(config.DRUGS_TO_CHECK))
            logger.info(
                "Subscribers: total %d, active %d, unsubscribed %d",
                stats["total"], stats["active"], stats["inactive"],
            )
            logger.info("===================================")
            scheduler = scheduling.start_scheduler(
                monitor, config.CRON_SCHEDULE, timezone=config.CRON_TIMEZONE,
            )
            logger.info("Running the first check at startup…")
            monitor.run_checks()

        while t_commands.is_alive():
            t_commands.join(timeout=1.0)
    except KeyboardInterrupt:
        logger.info("Shutting down…")
    finally:
        stop_event.set()
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        monitor.shutdown()
        client.close()


if __name__ == "__main__":
    main()
