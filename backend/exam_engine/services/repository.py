"""Persistence contract for the attempt state machine.

``CatalogRepository`` and ``AttemptRepository`` are the interfaces the
services depend on. ``SqlAttemptRepository`` implements the attempt side on
SQLAlchemy; the catalog side lives in ``catalog.py``.

Atomicity lives here: starting an attempt is a single conditional insert
guarded by a partial unique index, and finalizing is a compare-and-swap on
``state`` that writes every derived field in the same statement.
"""

import json
import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.db.models import AnswerRecordDB, AttemptDB, generate_uuid
from exam_engine.models.attempt import (
    AnswerEvaluation,
    AnswerRecord,
    Attempt,
    AttemptState,
    AttemptTotals,
    SubmissionType,
    SubmittedAnswer,
)
from exam_engine.models.exam import ExamDefinition, QuestionDefinition

logger = logging.getLogger(__name__)

RANKED_STATES = (AttemptState.SUBMITTED.value, AttemptState.EXPIRED.value)
TERMINAL_STATES = (
    AttemptState.SUBMITTED.value,
    AttemptState.EXPIRED.value,
    AttemptState.ABANDONED.value,
)


class CatalogRepository(Protocol):
    """Read-only access to exam and question definitions."""

    async def get_exam(self, exam_id: str) -> ExamDefinition | None: ...

    async def get_questions(self, exam_id: str) -> list[QuestionDefinition]: ...


class AttemptRepository(Protocol):
    """Attempt and answer record storage."""

    async def get_attempt(self, attempt_id: str) -> Attempt | None: ...

    async def get_in_progress(self, user_id: str, exam_id: str) -> Attempt | None: ...

    async def count_terminal(self, user_id: str, exam_id: str) -> int: ...

    async def create_in_progress(
        self, user_id: str, exam_id: str, started_at: datetime, deadline_at: datetime
    ) -> tuple[Attempt, bool]:
        """Insert a live attempt, or return the one that won a concurrent race.

        The boolean is True when this call created the row.
        """
        ...

    async def lock_in_progress(self, attempt_id: str) -> bool:
        """Lock a live attempt for writing. False if it is already terminal."""
        ...

    async def upsert_answers(
        self, attempt_id: str, answers: list[SubmittedAnswer], recorded_at: datetime
    ) -> None: ...

    async def list_answers(self, attempt_id: str) -> list[AnswerRecord]: ...

    async def finalize(
        self,
        attempt_id: str,
        state: AttemptState,
        submission_type: SubmissionType,
        submitted_at: datetime,
        totals: AttemptTotals,
        evaluations: list[AnswerEvaluation],
    ) -> bool:
        """Move a live attempt to a terminal state. False if another caller won."""
        ...

    async def list_overdue(self, now: datetime, limit: int = 500) -> list[Attempt]: ...

    async def list_ranking_population(self, exam_id: str) -> list[Attempt]: ...

    async def save_rankings(self, rankings: dict[str, tuple[int, float]]) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


def _is_blank(raw) -> bool:
    return raw is None or raw == "" or raw == []


class SqlAttemptRepository:
    """``AttemptRepository`` backed by an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fetch(self, stmt):
        # CAS updates bypass the identity map, so reads must overwrite it
        return await self.db.execute(stmt, execution_options={"populate_existing": True})

    async def get_attempt(self, attempt_id: str) -> Attempt | None:
        result = await self._fetch(select(AttemptDB).where(AttemptDB.id == attempt_id))
        db_attempt = result.scalar_one_or_none()
        if not db_attempt:
            return None
        return self._attempt_to_model(db_attempt)

    async def get_in_progress(self, user_id: str, exam_id: str) -> Attempt | None:
        result = await self._fetch(
            select(AttemptDB).where(
                AttemptDB.user_id == user_id,
                AttemptDB.exam_id == exam_id,
                AttemptDB.state == AttemptState.IN_PROGRESS.value,
            )
        )
        db_attempt = result.scalar_one_or_none()
        if not db_attempt:
            return None
        return self._attempt_to_model(db_attempt)

    async def count_terminal(self, user_id: str, exam_id: str) -> int:
        count = await self.db.scalar(
            select(func.count())
            .select_from(AttemptDB)
            .where(
                AttemptDB.user_id == user_id,
                AttemptDB.exam_id == exam_id,
                AttemptDB.state.in_(TERMINAL_STATES),
            )
        )
        return int(count or 0)

    async def create_in_progress(
        self, user_id: str, exam_id: str, started_at: datetime, deadline_at: datetime
    ) -> tuple[Attempt, bool]:
        db_attempt = AttemptDB(
            id=generate_uuid(),
            user_id=user_id,
            exam_id=exam_id,
            state=AttemptState.IN_PROGRESS.value,
            started_at=started_at,
            deadline_at=deadline_at,
        )
        created = self._attempt_to_model(db_attempt)
        self.db.add(db_attempt)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost the race on ux_attempts_user_exam_in_progress
            await self.db.rollback()
            logger.warning(
                f"Concurrent start for user {user_id} on exam {exam_id}, "
                "returning the existing attempt"
            )
            existing = await self.get_in_progress(user_id, exam_id)
            if existing is None:
                raise
            return existing, False
        return created, True

    def _insert(self):
        if self.db.get_bind().dialect.name == "postgresql":
            return pg_insert
        return sqlite_insert

    async def lock_in_progress(self, attempt_id: str) -> bool:
        # No-op write that takes the row lock, so a concurrent finalize
        # cannot interleave with the answer upserts that follow
        result = await self.db.execute(
            update(AttemptDB)
            .where(
                AttemptDB.id == attempt_id,
                AttemptDB.state == AttemptState.IN_PROGRESS.value,
            )
            .values(state=AttemptState.IN_PROGRESS.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def upsert_answers(
        self, attempt_id: str, answers: list[SubmittedAnswer], recorded_at: datetime
    ) -> None:
        # Last answer wins when a batch repeats a question
        latest = {a.question_id: a for a in answers}
        if not latest:
            return
        rows = [
            {
                "id": generate_uuid(),
                "attempt_id": attempt_id,
                "question_id": a.question_id,
                "raw_answer": json.dumps(a.answer, default=str),
                "is_skipped": _is_blank(a.answer),
                "is_correct": False,
                "marks_awarded": 0.0,
                "time_taken_seconds": a.time_taken_seconds,
                "is_flagged_for_review": a.is_flagged_for_review,
                "recorded_at": recorded_at,
            }
            for a in latest.values()
        ]
        stmt = self._insert()(AnswerRecordDB).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["attempt_id", "question_id"],
            set_={
                "raw_answer": stmt.excluded.raw_answer,
                "is_skipped": stmt.excluded.is_skipped,
                "time_taken_seconds": stmt.excluded.time_taken_seconds,
                "is_flagged_for_review": stmt.excluded.is_flagged_for_review,
                "recorded_at": stmt.excluded.recorded_at,
            },
        )
        await self.db.execute(stmt)

    async def list_answers(self, attempt_id: str) -> list[AnswerRecord]:
        result = await self._fetch(
            select(AnswerRecordDB).where(AnswerRecordDB.attempt_id == attempt_id)
        )
        return [self._answer_to_model(a) for a in result.scalars().all()]

    async def finalize(
        self,
        attempt_id: str,
        state: AttemptState,
        submission_type: SubmissionType,
        submitted_at: datetime,
        totals: AttemptTotals,
        evaluations: list[AnswerEvaluation],
    ) -> bool:
        result = await self.db.execute(
            update(AttemptDB)
            .where(
                AttemptDB.id == attempt_id,
                AttemptDB.state == AttemptState.IN_PROGRESS.value,
            )
            .values(
                state=state.value,
                submission_type=submission_type.value,
                submitted_at=submitted_at,
                **totals.model_dump(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        for evaluation in evaluations:
            await self.db.execute(
                update(AnswerRecordDB)
                .where(
                    AnswerRecordDB.attempt_id == attempt_id,
                    AnswerRecordDB.question_id == evaluation.question_id,
                )
                .values(
                    is_correct=evaluation.is_correct,
                    is_skipped=evaluation.is_skipped,
                    marks_awarded=evaluation.marks_awarded,
                )
                .execution_options(synchronize_session=False)
            )
        return True

    async def list_overdue(self, now: datetime, limit: int = 500) -> list[Attempt]:
        result = await self._fetch(
            select(AttemptDB)
            .where(
                AttemptDB.state == AttemptState.IN_PROGRESS.value,
                AttemptDB.deadline_at < now,
            )
            .order_by(AttemptDB.deadline_at)
            .limit(limit)
        )
        return [self._attempt_to_model(a) for a in result.scalars().all()]

    async def list_ranking_population(self, exam_id: str) -> list[Attempt]:
        result = await self._fetch(
            select(AttemptDB).where(
                AttemptDB.exam_id == exam_id,
                AttemptDB.state.in_(RANKED_STATES),
            )
        )
        return [self._attempt_to_model(a) for a in result.scalars().all()]

    async def save_rankings(self, rankings: dict[str, tuple[int, float]]) -> None:
        for attempt_id, (rank, percentile) in rankings.items():
            await self.db.execute(
                update(AttemptDB)
                .where(AttemptDB.id == attempt_id)
                .values(rank=rank, percentile=percentile)
                .execution_options(synchronize_session=False)
            )

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    def _attempt_to_model(self, db_attempt: AttemptDB) -> Attempt:
        return Attempt(
            id=db_attempt.id,
            exam_id=db_attempt.exam_id,
            user_id=db_attempt.user_id,
            state=AttemptState(db_attempt.state),
            started_at=db_attempt.started_at,
            deadline_at=db_attempt.deadline_at,
            submitted_at=db_attempt.submitted_at,
            submission_type=(
                SubmissionType(db_attempt.submission_type)
                if db_attempt.submission_type
                else None
            ),
            total_marks_obtained=db_attempt.total_marks_obtained,
            total_marks_possible=db_attempt.total_marks_possible,
            percentage=db_attempt.percentage,
            is_passed=db_attempt.is_passed,
            correct_count=db_attempt.correct_count,
            incorrect_count=db_attempt.incorrect_count,
            skipped_count=db_attempt.skipped_count,
            rank=db_attempt.rank,
            percentile=db_attempt.percentile,
        )

    def _answer_to_model(self, db_answer: AnswerRecordDB) -> AnswerRecord:
        return AnswerRecord(
            attempt_id=db_answer.attempt_id,
            question_id=db_answer.question_id,
            raw_answer=db_answer.get_raw_answer(),
            is_skipped=db_answer.is_skipped,
            is_correct=db_answer.is_correct,
            marks_awarded=db_answer.marks_awarded,
            time_taken_seconds=db_answer.time_taken_seconds,
            is_flagged_for_review=db_answer.is_flagged_for_review,
            recorded_at=db_answer.recorded_at,
        )
