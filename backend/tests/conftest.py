"""Shared fixtures: a throwaway SQLite database per test and a fixed clock."""

import os

os.environ.setdefault("RUN_SWEEPER", "false")
os.environ.setdefault("SKIP_SEEDING", "true")

from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from exam_engine.db.models import Base
from exam_engine.models.exam import (
    ExamDefinition,
    NumericalQuestion,
    Option,
    ShowResultsPolicy,
    SingleChoiceQuestion,
)
from exam_engine.models.user import Principal
from exam_engine.services.attempts import AttemptService
from exam_engine.services.catalog import CatalogService

START = datetime(2026, 3, 2, 9, 0, 0)

STUDENT = Principal(user_id="student-1")
OTHER_STUDENT = Principal(user_id="student-2")
ADMIN = Principal(user_id="admin-1", role="admin")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_exam(exam_id: str = "exam-1", **overrides):
    """Two questions worth 4 marks each with 1 negative mark.

    Q1 is single choice with correct option "B", Q2 is numerical with
    correct value 42 and tolerance 0.5.
    """
    fields = dict(
        id=exam_id,
        title="Worked example",
        duration_minutes=60,
        total_marks=8,
        passing_marks=4,
        total_questions=2,
        show_results=ShowResultsPolicy.IMMEDIATE,
        allow_review=True,
        max_attempts=2,
    )
    fields.update(overrides)
    exam = ExamDefinition(**fields)
    questions = [
        SingleChoiceQuestion(
            id=f"{exam_id}-q1",
            type="SINGLE_CHOICE",
            order=1,
            text="Pick B",
            options=[Option(id="A"), Option(id="B"), Option(id="C")],
            correct_answer="B",
            marks=4,
            negative_marks=1,
        ),
        NumericalQuestion(
            id=f"{exam_id}-q2",
            type="NUMERICAL",
            order=2,
            text="The answer",
            correct_answer=42,
            numeric_tolerance=0.5,
            marks=4,
            negative_marks=1,
        ),
    ]
    return exam, questions


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def clock():
    return FakeClock(START)


async def seed_exam(session_factory, exam, questions):
    async with session_factory() as db:
        await CatalogService(db).create_exam(exam, questions)
        await db.commit()


@pytest.fixture
async def exam(session_factory):
    exam, questions = make_exam()
    await seed_exam(session_factory, exam, questions)
    return exam


@pytest.fixture
async def make_service(session_factory, clock):
    """Build an ``AttemptService`` on its own session."""
    sessions = []

    def factory(**kwargs) -> AttemptService:
        db = session_factory()
        sessions.append(db)
        return AttemptService.from_session(db, clock=clock, **kwargs)

    yield factory
    for db in sessions:
        await db.close()


@pytest.fixture
def service(make_service):
    return make_service()
