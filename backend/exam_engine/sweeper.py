"""Deadline sweep: closes attempts whose clients never submitted."""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_engine.config import settings
from exam_engine.services.attempts import AttemptService
from exam_engine.services.ranking import RankingService

logger = logging.getLogger(__name__)


async def sweep_once(session_factory: async_sessionmaker[AsyncSession]) -> list[str]:
    """Expire every overdue attempt, then re-rank the affected exams."""
    async with session_factory() as db:
        service = AttemptService.from_session(db)
        expired = await service.expire_overdue()
        affected = set(service.pending_rankings)

    ranking = RankingService(session_factory)
    for exam_id in affected:
        await ranking.recompute_quietly(exam_id)
    return expired


async def sweep_forever(
    session_factory: async_sessionmaker[AsyncSession],
    interval: float | None = None,
) -> None:
    """Run ``sweep_once`` every ``interval`` seconds until cancelled."""
    interval = interval or settings.sweep_interval_seconds
    logger.info(f"Deadline sweeper running every {interval}s")
    while True:
        try:
            await sweep_once(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Deadline sweep cycle failed")
        await asyncio.sleep(interval)
