#!/usr/bin/env python3
"""
Planning Poker Purge Script

Deletes every game that has been inactive for longer than the configured
number of days. Meant to run periodically (cron, scheduled job).

Usage:
    python purge_poker_games.py [--days-old N] [--init-db] [--database-url URL]
"""
import asyncio
import sys
import os
import argparse
import logging

from dotenv import load_dotenv

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db.database import build_engine, build_session_factory, init_db  # noqa: E402
from services.logging_service import setup_logging  # noqa: E402
from services.poker_errors import PokerError  # noqa: E402
from services.poker_service import PokerService  # noqa: E402

DEFAULT_DAYS_OLD = 30

logger = logging.getLogger("poker.purge")


def get_days_old() -> int:
    """Read POKER_PURGE_DAYS_OLD, falling back to the default on bad input"""
    raw = os.environ.get("POKER_PURGE_DAYS_OLD", "")
    if not raw:
        return DEFAULT_DAYS_OLD
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid POKER_PURGE_DAYS_OLD={raw!r}, using {DEFAULT_DAYS_OLD}")
        return DEFAULT_DAYS_OLD


async def purge(database_url: str, days_old: int, create_tables: bool = False) -> None:
    engine = build_engine(database_url)
    try:
        if create_tables:
            await init_db(bind=engine)

        session_factory = build_session_factory(engine)
        async with session_factory() as session:
            await PokerService(session).purge_old_games(days_old)
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Delete planning poker games inactive for N days")
    parser.add_argument("--days-old", type=int, default=None,
                        help=f"Inactivity threshold in days (default: POKER_PURGE_DAYS_OLD or {DEFAULT_DAYS_OLD})")
    parser.add_argument("--database-url", default=None, help="Database URL (default: DATABASE_URL)")
    parser.add_argument("--init-db", action="store_true", help="Create missing tables before purging")
    args = parser.parse_args(argv)

    setup_logging()

    database_url = args.database_url or os.environ.get("DATABASE_URL", "")
    if not database_url:
        logger.error("DATABASE_URL environment variable not set")
        return 1

    days_old = args.days_old if args.days_old is not None else get_days_old()
    if days_old < 0:
        logger.error(f"--days-old must not be negative, got {days_old}")
        return 1

    try:
        asyncio.run(purge(database_url, days_old, create_tables=args.init_db))
    except PokerError as e:
        logger.error(f"Purge failed: {e}")
        return 1

    logger.info(f"Purged poker games inactive for more than {days_old} days")
    return 0


if __name__ == "__main__":
    sys.exit(main())
