"""Attempt state machine.

IN_PROGRESS -> SUBMITTED | EXPIRED | ABANDONED. Terminal states are final.

Every terminal transition goes through ``_finalize``: answers are upserted,
evaluated and aggregated, then a compare-and-swap on the attempt's state
writes the totals. Only one caller can win that swap; the others read the
winner's result back.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.clock import utc_now
from exam_engine.config import settings
from exam_engine.exceptions import (
    AttemptAlreadyFinalized,
    AttemptLimitReached,
    AttemptNotFinalized,
    AttemptNotFound,
    CatalogError,
    ExamNotAvailable,
    NotAuthorized,
)
from exam_engine.models.attempt import (
    Attempt,
    AttemptHandle,
    AttemptResult,
    AttemptState,
    AttemptStatus,
    QuestionView,
    SubmissionType,
    SubmittedAnswer,
)
from exam_engine.models.exam import ExamDefinition, QuestionDefinition, QuestionType
from exam_engine.models.user import Principal

from .catalog import CatalogService
from .evaluator import evaluate
from .repository import AttemptRepository, CatalogRepository, SqlAttemptRepository
from .results import assemble_result
from .scoring import aggregate

logger = logging.getLogger(__name__)

RANKED = (AttemptState.SUBMITTED, AttemptState.EXPIRED)


class AttemptService:
    """Start, save, submit and close exam attempts."""

    def __init__(
        self,
        attempts: AttemptRepository,
        catalog: CatalogRepository,
        clock: Callable[[], datetime] = utc_now,
        clamp_negative_total: bool | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        self.attempts = attempts
        self.catalog = catalog
        self.clock = clock
        self.clamp_negative_total = (
            settings.clamp_negative_total if clamp_negative_total is None else clamp_negative_total
        )
        self.max_retries = max(1, max_retries or settings.finalize_max_retries)
        self.retry_delay = settings.finalize_retry_delay if retry_delay is None else retry_delay
        # Exams whose ranked population changed during this service's lifetime
        self.pending_rankings: set[str] = set()

    @classmethod
    def from_session(
        cls, db: AsyncSession, clock: Callable[[], datetime] = utc_now, **kwargs
    ) -> "AttemptService":
        return cls(SqlAttemptRepository(db), CatalogService(db), clock=clock, **kwargs)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self, principal: Principal, exam_id: str) -> AttemptHandle:
        """Start an attempt, or resume the caller's live one."""
        now = self.clock()
        exam = await self.catalog.get_exam(exam_id)
        if exam is None or not exam.is_open_at(now):
            raise ExamNotAvailable(f"Exam {exam_id} is not available")
        questions = await self._load_questions(exam)

        existing = await self.attempts.get_in_progress(principal.user_id, exam_id)
        if existing and now > existing.deadline_at:
            await self._finalize(
                existing, exam, questions, [], AttemptState.EXPIRED, SubmissionType.AUTO
            )
            existing = None
        if existing:
            logger.info(f"Resuming attempt {existing.id} for user {principal.user_id}")
            return self._handle(existing, questions, resumed=True)

        used = await self.attempts.count_terminal(principal.user_id, exam_id)
        if used >= exam.max_attempts:
            raise AttemptLimitReached(
                f"Attempt limit of {exam.max_attempts} reached for exam {exam_id}"
            )

        attempt, created = await self.attempts.create_in_progress(
            principal.user_id,
            exam_id,
            started_at=now,
            deadline_at=now + timedelta(minutes=exam.duration_minutes),
        )
        if created:
            logger.info(
                f"Started attempt {attempt.id} for user {principal.user_id} "
                f"on exam {exam_id}, deadline {attempt.deadline_at.isoformat()}"
            )
        return self._handle(attempt, questions, resumed=not created)

    async def save_answers(
        self, principal: Principal, attempt_id: str, answers: list[SubmittedAnswer]
    ) -> AttemptStatus:
        """Record answers on a live attempt without finalizing it.

        Past the deadline the attempt is expired instead and the answers
        are dropped.
        """
        attempt = await self._get_owned(principal, attempt_id)
        exam, questions = await self._load_exam(attempt.exam_id)
        if attempt.is_terminal:
            raise AttemptAlreadyFinalized(
                f"Attempt {attempt_id} is {attempt.state.value}",
                await self._result(attempt, exam, questions),
            )

        now = self.clock()
        if now > attempt.deadline_at:
            logger.warning(
                f"Discarding {len(answers)} answers saved after the deadline "
                f"of attempt {attempt_id}"
            )
            attempt, _ = await self._finalize(
                attempt, exam, questions, [], AttemptState.EXPIRED, SubmissionType.AUTO, now
            )
            return self._status(attempt, now)

        accepted = self._known_answers(attempt_id, answers, questions)
        try:
            if not await self.attempts.lock_in_progress(attempt_id):
                await self.attempts.rollback()
                stored = await self.attempts.get_attempt(attempt_id)
                raise AttemptAlreadyFinalized(
                    f"Attempt {attempt_id} is {stored.state.value}",
                    await self._result(stored, exam, questions),
                )
            await self.attempts.upsert_answers(attempt_id, accepted, now)
            await self.attempts.commit()
        except AttemptAlreadyFinalized:
            raise
        except Exception:
            await self.attempts.rollback()
            raise
        return self._status(attempt, now)

    async def submit(
        self, principal: Principal, attempt_id: str, answers: list[SubmittedAnswer]
    ) -> AttemptResult:
        """Finalize an attempt with its last batch of answers.

        Raises:
            AttemptAlreadyFinalized: The attempt was already terminal, or a
                concurrent caller finalized it first. The exception carries
                the stored result.
        """
        attempt = await self._get_owned(principal, attempt_id)
        exam, questions = await self._load_exam(attempt.exam_id)
        if attempt.is_terminal:
            raise AttemptAlreadyFinalized(
                f"Attempt {attempt_id} is already {attempt.state.value}",
                await self._result(attempt, exam, questions),
            )

        now = self.clock()
        if now > attempt.deadline_at:
            if answers:
                logger.warning(
                    f"Attempt {attempt_id} submitted after its deadline, "
                    f"discarding {len(answers)} late answers"
                )
            stored, won = await self._finalize(
                attempt, exam, questions, [], AttemptState.EXPIRED, SubmissionType.MANUAL, now
            )
        else:
            accepted = self._known_answers(attempt_id, answers, questions)
            stored, won = await self._finalize(
                attempt,
                exam,
                questions,
                accepted,
                AttemptState.SUBMITTED,
                SubmissionType.MANUAL,
                now,
            )

        result = await self._result(stored, exam, questions)
        if not won:
            raise AttemptAlreadyFinalized(
                f"Attempt {attempt_id} was finalized concurrently", result
            )
        return result

    async def get_status(self, principal: Principal, attempt_id: str) -> AttemptStatus:
        """Current state and remaining time, from the server clock."""
        attempt = await self._get_owned(principal, attempt_id)
        return self._status(attempt, self.clock())

    async def get_result(self, principal: Principal, attempt_id: str) -> AttemptResult:
        """Result of a finalized attempt, subject to the exam's release policy."""
        attempt = await self._get_owned(principal, attempt_id)
        if not attempt.is_terminal:
            raise AttemptNotFinalized(f"Attempt {attempt_id} is still in progress")
        exam, questions = await self._load_exam(attempt.exam_id)
        return await self._result(attempt, exam, questions)

    async def abandon(self, principal: Principal, attempt_id: str) -> AttemptResult:
        """Administratively close a live attempt as ABANDONED."""
        if not principal.is_admin:
            raise NotAuthorized("Only administrators can abandon attempts")
        attempt = await self._get_owned(principal, attempt_id)
        exam, questions = await self._load_exam(attempt.exam_id)
        if attempt.is_terminal:
            raise AttemptAlreadyFinalized(
                f"Attempt {attempt_id} is already {attempt.state.value}",
                await self._result(attempt, exam, questions),
            )
        stored, won = await self._finalize(
            attempt, exam, questions, [], AttemptState.ABANDONED, SubmissionType.AUTO
        )
        result = await self._result(stored, exam, questions)
        if not won:
            raise AttemptAlreadyFinalized(
                f"Attempt {attempt_id} was finalized concurrently", result
            )
        return result

    async def expire_overdue(self, limit: int = 500) -> list[str]:
        """Deadline sweep: expire live attempts whose time has run out.

        Returns the ids of the attempts this call expired. A failure on one
        attempt is logged and does not stop the sweep.
        """
        overdue = await self.attempts.list_overdue(self.clock(), limit=limit)
        exams: dict[str, tuple[ExamDefinition, list[QuestionDefinition]]] = {}
        expired = []
        for attempt in overdue:
            try:
                if attempt.exam_id not in exams:
                    exams[attempt.exam_id] = await self._load_exam(attempt.exam_id)
                exam, questions = exams[attempt.exam_id]
                _, won = await self._finalize(
                    attempt, exam, questions, [], AttemptState.EXPIRED, SubmissionType.AUTO
                )
            except Exception:
                logger.exception(f"Deadline sweep failed for attempt {attempt.id}")
                continue
            if won:
                expired.append(attempt.id)
        if expired:
            logger.info(f"Deadline sweep expired {len(expired)} attempts")
        return expired

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _finalize(
        self,
        attempt: Attempt,
        exam: ExamDefinition,
        questions: list[QuestionDefinition],
        new_answers: list[SubmittedAnswer],
        state: AttemptState,
        submission_type: SubmissionType,
        now: datetime | None = None,
    ) -> tuple[Attempt, bool]:
        """Score and close an attempt. Returns the stored attempt and whether
        this call performed the transition.

        Safe to retry: answers are upserts and the transition is a
        compare-and-swap, so a retry can neither double count nor overwrite
        another caller's result.
        """
        if now is None:
            now = self.clock()
        won = False
        for try_number in range(1, self.max_retries + 1):
            try:
                # Lock before reading answers so a concurrent save either
                # commits first or waits for this transition
                if not await self.attempts.lock_in_progress(attempt.id):
                    await self.attempts.rollback()
                    break
                if new_answers:
                    await self.attempts.upsert_answers(attempt.id, new_answers, now)
                records = await self.attempts.list_answers(attempt.id)
                usable = {
                    r.question_id: r
                    for r in records
                    if r.recorded_at <= attempt.deadline_at
                }
                evaluations = [
                    evaluate(q, usable[q.id].raw_answer, exam.partial_marking)
                    for q in questions
                    if q.id in usable
                ]
                totals = aggregate(evaluations, exam, clamp_to_zero=self.clamp_negative_total)
                won = await self.attempts.finalize(
                    attempt.id, state, submission_type, now, totals, evaluations
                )
                if won:
                    await self.attempts.commit()
                else:
                    await self.attempts.rollback()
                break
            except OperationalError as e:
                await self.attempts.rollback()
                if try_number >= self.max_retries:
                    logger.error(
                        f"Giving up finalizing attempt {attempt.id} "
                        f"after {try_number} tries: {e}"
                    )
                    raise
                delay = self.retry_delay * try_number
                logger.warning(
                    f"Transient error finalizing attempt {attempt.id} "
                    f"(try {try_number}), retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)
            except Exception:
                await self.attempts.rollback()
                raise

        stored = await self.attempts.get_attempt(attempt.id)
        if won:
            logger.info(
                f"Attempt {attempt.id} {state.value}: {totals.total_marks_obtained}"
                f"/{totals.total_marks_possible} ({totals.percentage}%), "
                f"{totals.correct_count} correct, {totals.incorrect_count} incorrect, "
                f"{totals.skipped_count} skipped"
            )
            if state in RANKED:
                self.pending_rankings.add(exam.id)
        else:
            logger.info(
                f"Attempt {attempt.id} was already {stored.state.value}, "
                "returning the stored result"
            )
        return stored, won

    async def _get_owned(self, principal: Principal, attempt_id: str) -> Attempt:
        attempt = await self.attempts.get_attempt(attempt_id)
        if attempt is None:
            raise AttemptNotFound(f"Attempt {attempt_id} not found")
        if attempt.user_id != principal.user_id and not principal.is_admin:
            raise NotAuthorized(f"Attempt {attempt_id} belongs to another user")
        return attempt

    async def _load_exam(
        self, exam_id: str
    ) -> tuple[ExamDefinition, list[QuestionDefinition]]:
        exam = await self.catalog.get_exam(exam_id)
        if exam is None:
            raise CatalogError(f"Exam {exam_id} referenced by an attempt is missing")
        return exam, await self._load_questions(exam)

    async def _load_questions(self, exam: ExamDefinition) -> list[QuestionDefinition]:
        questions = await self.catalog.get_questions(exam.id)
        if len(questions) > exam.total_questions:
            raise CatalogError(
                f"Exam {exam.id} declares {exam.total_questions} questions "
                f"but has {len(questions)}"
            )
        return questions

    def _known_answers(
        self,
        attempt_id: str,
        answers: list[SubmittedAnswer],
        questions: list[QuestionDefinition],
    ) -> list[SubmittedAnswer]:
        known = {q.id for q in questions}
        accepted = [a for a in answers if a.question_id in known]
        dropped = len(answers) - len(accepted)
        if dropped:
            logger.warning(
                f"Dropped {dropped} answers for unknown questions on attempt {attempt_id}"
            )
        return accepted

    async def _result(
        self,
        attempt: Attempt,
        exam: ExamDefinition,
        questions: list[QuestionDefinition],
    ) -> AttemptResult:
        records = await self.attempts.list_answers(attempt.id) if exam.allow_review else []
        return assemble_result(attempt, exam, questions, records, self.clock())

    def _status(self, attempt: Attempt, now: datetime) -> AttemptStatus:
        remaining = 0
        if not attempt.is_terminal:
            remaining = max(0, int((attempt.deadline_at - now).total_seconds()))
        return AttemptStatus(
            attempt_id=attempt.id,
            state=attempt.state,
            deadline_at=attempt.deadline_at,
            time_remaining_seconds=remaining,
        )

    def _handle(
        self, attempt: Attempt, questions: list[QuestionDefinition], resumed: bool
    ) -> AttemptHandle:
        return AttemptHandle(
            attempt_id=attempt.id,
            exam_id=attempt.exam_id,
            state=attempt.state,
            started_at=attempt.started_at,
            deadline_at=attempt.deadline_at,
            resumed=resumed,
            questions=[
                QuestionView(
                    id=q.id,
                    type=QuestionType(q.type),
                    text=q.text,
                    order=q.order,
                    options=getattr(q, "options", []),
                    marks=q.marks,
                    negative_marks=q.negative_marks,
                )
                for q in questions
            ],
        )
