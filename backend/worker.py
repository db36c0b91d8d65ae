"""Standalone deadline sweeper.

Run this next to API processes started with ``RUN_SWEEPER=false`` so that
only one process sweeps overdue attempts.
"""

import argparse
import asyncio
import logging

from exam_engine.config import settings
from exam_engine.db import init_db
from exam_engine.db.database import async_session, engine
from exam_engine.sweeper import sweep_forever, sweep_once

logger = logging.getLogger("worker")


async def main(once: bool, interval: float):
    await init_db()
    try:
        if once:
            expired = await sweep_once(async_session)
            logger.info(f"Expired {len(expired)} attempts")
        else:
            await sweep_forever(async_session, interval)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Expire overdue exam attempts")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.sweep_interval_seconds,
        help="Seconds between sweeps",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(main(args.once, args.interval))
    except KeyboardInterrupt:
        logger.info("Sweeper stopped")
