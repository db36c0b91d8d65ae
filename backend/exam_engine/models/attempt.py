"""Attempt, answer and result models."""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .exam import Option, QuestionType


class AttemptState(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    EXPIRED = "EXPIRED"
    ABANDONED = "ABANDONED"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptState.IN_PROGRESS


class SubmissionType(str, Enum):
    MANUAL = "MANUAL"  # candidate pressed submit
    AUTO = "AUTO"  # deadline sweep or administrative close


class SubmittedAnswer(BaseModel):
    """One answer in a save or submit request.

    ``answer`` is accepted in any JSON shape; the evaluator scores shapes it
    does not understand as skipped or incorrect. Unusable metadata is
    dropped rather than failing the whole batch.
    """

    question_id: str
    answer: Any = None
    time_taken_seconds: int | None = None
    is_flagged_for_review: bool = False

    @field_validator("time_taken_seconds", mode="before")
    @classmethod
    def _drop_invalid_time(cls, value: Any) -> int | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if not math.isfinite(value) or value < 0:
            return None
        return int(value)

    @field_validator("is_flagged_for_review", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return value is True


class AnswersRequest(BaseModel):
    """Request body for saving progress or submitting an attempt."""

    answers: list[SubmittedAnswer] = Field(default_factory=list)


class AnswerEvaluation(BaseModel):
    """Verdict for a single question."""

    question_id: str
    is_correct: bool
    is_skipped: bool
    marks_awarded: float


class AttemptTotals(BaseModel):
    """Attempt-level totals produced by the aggregator."""

    total_marks_obtained: float
    total_marks_possible: float
    percentage: float
    is_passed: bool
    correct_count: int
    incorrect_count: int
    skipped_count: int


class AnswerRecord(BaseModel):
    """Persisted answer for one question of an attempt."""

    attempt_id: str
    question_id: str
    raw_answer: Any = None
    is_skipped: bool = False
    is_correct: bool = False
    marks_awarded: float = 0.0
    time_taken_seconds: int | None = None
    is_flagged_for_review: bool = False
    recorded_at: datetime


class Attempt(BaseModel):
    """Snapshot of an attempt record."""

    id: str
    exam_id: str
    user_id: str
    state: AttemptState
    started_at: datetime
    deadline_at: datetime
    submitted_at: datetime | None = None
    submission_type: SubmissionType | None = None
    total_marks_obtained: float | None = None
    total_marks_possible: float | None = None
    percentage: float | None = None
    is_passed: bool | None = None
    correct_count: int | None = None
    incorrect_count: int | None = None
    skipped_count: int | None = None
    rank: int | None = None
    percentile: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class QuestionView(BaseModel):
    """A question as shown to the candidate, without its answer."""

    id: str
    type: QuestionType
    text: str
    order: int
    options: list[Option] = Field(default_factory=list)
    marks: float
    negative_marks: float


class AttemptHandle(BaseModel):
    """Returned by StartAttempt."""

    attempt_id: str
    exam_id: str
    state: AttemptState
    started_at: datetime
    deadline_at: datetime
    resumed: bool = False
    questions: list[QuestionView]


class AttemptStatus(BaseModel):
    """Returned by GetAttemptStatus, for countdown reconciliation."""

    attempt_id: str
    state: AttemptState
    deadline_at: datetime
    time_remaining_seconds: int


class QuestionReview(BaseModel):
    """Per-question detail, only included when review is allowed."""

    question_id: str
    raw_answer: Any = None
    correct_answer: Any = None
    explanation: str | None = None
    is_correct: bool
    is_skipped: bool
    marks_awarded: float
    is_flagged_for_review: bool = False


class AttemptResult(BaseModel):
    """Client-facing result of a finalized attempt.

    When the exam defers results only the acknowledgement fields are set and
    ``results_available`` is false.
    """

    attempt_id: str
    exam_id: str
    state: AttemptState
    submitted_at: datetime | None
    submission_type: SubmissionType | None = None
    results_available: bool
    score: float | None = None
    total_marks: float | None = None
    percentage: float | None = None
    is_passed: bool | None = None
    correct_count: int | None = None
    incorrect_count: int | None = None
    skipped_count: int | None = None
    rank: int | None = None
    percentile: float | None = None
    time_taken_seconds: int | None = None
    review: list[QuestionReview] | None = None
