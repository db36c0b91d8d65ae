"""Rank and percentile over an exam's finalized attempts.

``compute_rankings`` is the pure calculation. ``RankingService`` reloads the
population and writes the results back; it runs after finalization, off the
submit path, and its failures never affect a stored score.
"""

import asyncio
import bisect
import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_engine.config import settings
from exam_engine.models.attempt import Attempt

from .repository import SqlAttemptRepository
from .scoring import round_half_up

logger = logging.getLogger(__name__)


def compute_rankings(population: list[Attempt]) -> dict[str, tuple[int, float]]:
    """Map attempt id to (rank, percentile).

    Rank is 1-based by score descending; ties go to the earlier finisher,
    then to the attempt id so the order is total. Percentile is the share of
    the population scoring strictly lower.
    """
    scored = [a for a in population if a.total_marks_obtained is not None]
    if not scored:
        return {}

    ordered = sorted(
        scored,
        key=lambda a: (
            -a.total_marks_obtained,
            a.submitted_at or datetime.max,
            a.id,
        ),
    )
    ascending_scores = sorted(a.total_marks_obtained for a in scored)
    size = Decimal(len(scored))

    rankings = {}
    for position, attempt in enumerate(ordered, start=1):
        lower = bisect.bisect_left(ascending_scores, attempt.total_marks_obtained)
        percentile = round_half_up(Decimal(lower) / size * 100)
        rankings[attempt.id] = (position, percentile)
    return rankings


class RankingService:
    """Recompute and persist rankings for one exam at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession],
        timeout: float | None = None,
    ):
        self.session_factory = session_factory
        self.timeout = timeout if timeout is not None else settings.ranking_timeout_seconds

    async def recompute(self, exam_id: str) -> int:
        """Recompute rank and percentile for every ranked attempt of an exam.

        Returns the number of attempts updated.
        """
        async with self.session_factory() as db:
            repository = SqlAttemptRepository(db)
            population = await repository.list_ranking_population(exam_id)
            rankings = compute_rankings(population)
            try:
                await repository.save_rankings(rankings)
                await repository.commit()
            except Exception:
                await repository.rollback()
                raise
        logger.info(f"Ranked {len(rankings)} attempts for exam {exam_id}")
        return len(rankings)

    async def recompute_quietly(self, exam_id: str) -> None:
        """Time-boxed recompute for background use. Logs instead of raising."""
        try:
            await asyncio.wait_for(self.recompute(exam_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Ranking for exam {exam_id} timed out after {self.timeout}s")
        except asyncio.CancelledError:
            logger.warning(f"Ranking for exam {exam_id} cancelled")
            raise
        except Exception:
            logger.exception(f"Ranking for exam {exam_id} failed")
