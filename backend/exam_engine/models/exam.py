"""Exam and question definitions read from the catalog.

Questions are a closed set of tagged variants, one model per question type,
discriminated on ``type``. The evaluator dispatches on the same tag.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator


class QuestionType(str, Enum):
    """Supported question types."""

    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    MULTIPLE_SELECT = "MULTIPLE_SELECT"
    TRUE_FALSE = "TRUE_FALSE"
    NUMERICAL = "NUMERICAL"


class ShowResultsPolicy(str, Enum):
    """When a finalized attempt's score is released to the candidate."""

    IMMEDIATE = "IMMEDIATE"
    AFTER_SUBMISSION = "AFTER_SUBMISSION"
    AFTER_END_TIME = "AFTER_END_TIME"
    NEVER = "NEVER"


class Option(BaseModel):
    """A selectable option with a stable id."""

    id: str
    text: str = ""


class _QuestionBase(BaseModel):
    id: str
    text: str = ""
    order: int = 0
    marks: float = Field(gt=0)
    negative_marks: float = Field(default=0.0, ge=0)
    explanation: str | None = None


class SingleChoiceQuestion(_QuestionBase):
    type: Literal["SINGLE_CHOICE"]
    options: list[Option] = Field(default_factory=list)
    correct_answer: str


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["MULTIPLE_CHOICE", "MULTIPLE_SELECT"]
    options: list[Option] = Field(default_factory=list)
    correct_answer: list[str] = Field(min_length=1)


class TrueFalseQuestion(_QuestionBase):
    type: Literal["TRUE_FALSE"]
    correct_answer: bool


class NumericalQuestion(_QuestionBase):
    type: Literal["NUMERICAL"]
    correct_answer: float
    numeric_tolerance: float = Field(default=0.0, ge=0)


QuestionDefinition = Annotated[
    Union[SingleChoiceQuestion, MultipleChoiceQuestion, TrueFalseQuestion, NumericalQuestion],
    Field(discriminator="type"),
]

question_adapter: TypeAdapter[QuestionDefinition] = TypeAdapter(QuestionDefinition)


class ExamDefinition(BaseModel):
    """Exam settings that govern attempts and scoring."""

    id: str
    title: str = ""
    duration_minutes: int = Field(gt=0)
    total_marks: float = Field(gt=0)
    passing_marks: float = Field(ge=0)
    total_questions: int = Field(ge=1)
    show_results: ShowResultsPolicy = ShowResultsPolicy.AFTER_SUBMISSION
    allow_review: bool = True
    partial_marking: bool = Field(
        default=False,
        description="Award proportional marks on multi-select questions",
    )
    is_published: bool = True
    start_window: datetime | None = None
    end_window: datetime | None = None
    max_attempts: int = Field(default=1, ge=1)

    @field_validator("start_window", "end_window")
    @classmethod
    def _to_naive_utc(cls, value: datetime | None) -> datetime | None:
        # The server clock is naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @model_validator(mode="after")
    def _passing_within_total(self) -> "ExamDefinition":
        if self.passing_marks > self.total_marks:
            raise ValueError("passing_marks cannot exceed total_marks")
        return self

    def is_open_at(self, now: datetime) -> bool:
        """True if the exam is published and inside its availability window."""
        if not self.is_published:
            return False
        if self.start_window and now < self.start_window:
            return False
        if self.end_window and now > self.end_window:
            return False
        return True
