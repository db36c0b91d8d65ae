"""SQLAlchemy database models."""

import json
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from exam_engine.clock import utc_now


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class ExamDB(Base):
    """Exam definition, owned by the catalog."""

    __tablename__ = "exams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    total_marks: Mapped[float] = mapped_column(Float, nullable=False)
    passing_marks: Mapped[float] = mapped_column(Float, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    show_results: Mapped[str] = mapped_column(String(30), default="AFTER_SUBMISSION")
    allow_review: Mapped[bool] = mapped_column(Boolean, default=True)
    partial_marking: Mapped[bool] = mapped_column(Boolean, default=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    start_window: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_window: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    questions: Mapped[list["QuestionDB"]] = relationship(back_populates="exam")


class QuestionDB(Base):
    """Question definition, owned by the catalog."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    exam_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("exams.id"), nullable=False, index=True
    )
    order: Mapped[int] = mapped_column(Integer, default=0)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    text: Mapped[str] = mapped_column(Text, default="")
    options: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)  # JSON
    marks: Mapped[float] = mapped_column(Float, nullable=False)
    negative_marks: Mapped[float] = mapped_column(Float, default=0.0)
    numeric_tolerance: Mapped[float | None] = mapped_column(Float, nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    exam: Mapped["ExamDB"] = relationship(back_populates="questions")

    def get_options(self) -> list[dict]:
        return json.loads(self.options)

    def set_options(self, options: list[dict]) -> None:
        self.options = json.dumps(options)

    def get_correct_answer(self) -> Any:
        return json.loads(self.correct_answer)

    def set_correct_answer(self, value: Any) -> None:
        self.correct_answer = json.dumps(value)


class AttemptDB(Base):
    """One user's timed run through an exam."""

    __tablename__ = "attempts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    exam_id: Mapped[str] = mapped_column(String(36), ForeignKey("exams.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="IN_PROGRESS")
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    deadline_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    submission_type: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Written once, in the same statement as the terminal transition
    total_marks_obtained: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_marks_possible: Mapped[float | None] = mapped_column(Float, nullable=True)
    percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    correct_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    incorrect_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    skipped_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Population dependent, recomputed in the background
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    percentile: Mapped[float | None] = mapped_column(Float, nullable=True)

    answers: Mapped[list["AnswerRecordDB"]] = relationship(back_populates="attempt")

    __table_args__ = (
        # At most one live attempt per user and exam
        Index(
            "ux_attempts_user_exam_in_progress",
            "user_id",
            "exam_id",
            unique=True,
            sqlite_where=text("state = 'IN_PROGRESS'"),
            postgresql_where=text("state = 'IN_PROGRESS'"),
        ),
        Index("ix_attempts_exam_state", "exam_id", "state"),
        Index("ix_attempts_state_deadline", "state", "deadline_at"),
    )


class AnswerRecordDB(Base):
    """Latest answer for one question within an attempt."""

    __tablename__ = "answer_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    attempt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("attempts.id"), nullable=False
    )
    question_id: Mapped[str] = mapped_column(String(36), nullable=False)
    raw_answer: Mapped[str] = mapped_column(Text, default="null")  # JSON
    is_skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    marks_awarded: Mapped[float] = mapped_column(Float, default=0.0)
    time_taken_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_flagged_for_review: Mapped[bool] = mapped_column(Boolean, default=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    attempt: Mapped["AttemptDB"] = relationship(back_populates="answers")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_records_attempt_question"),
    )

    def get_raw_answer(self) -> Any:
        return json.loads(self.raw_answer)
