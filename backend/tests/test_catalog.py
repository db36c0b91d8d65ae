"""Tests for catalog reads and JSON seeding."""

import json
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import update

from exam_engine.db.models import QuestionDB
from exam_engine.exceptions import CatalogError
from exam_engine.models.exam import (
    MultipleChoiceQuestion,
    NumericalQuestion,
    ShowResultsPolicy,
    TrueFalseQuestion,
)
from exam_engine.services.catalog import CatalogService

SAMPLE_CATALOG = Path(__file__).parent.parent / "data" / "catalog" / "sample_exams.json"


async def test_load_sample_catalog(session_factory):
    async with session_factory() as db:
        catalog = CatalogService(db)
        assert await catalog.load_exams_from_json(SAMPLE_CATALOG) == 2
        await db.commit()

    async with session_factory() as db:
        catalog = CatalogService(db)
        exam = await catalog.get_exam("maths-mock-1")
        questions = await catalog.get_questions("maths-mock-1")

    assert exam.title == "Maths Mock Paper 1"
    assert exam.show_results == ShowResultsPolicy.IMMEDIATE
    assert exam.max_attempts == 2
    assert [q.id for q in questions] == ["mm1-q1", "mm1-q2", "mm1-q3", "mm1-q4"]
    assert isinstance(questions[1], MultipleChoiceQuestion)
    assert questions[1].correct_answer == ["A", "C"]
    assert questions[1].explanation.startswith("9 = 3 x 3")
    assert questions[0].explanation is None
    assert isinstance(questions[2], TrueFalseQuestion)
    assert questions[2].correct_answer is True
    assert isinstance(questions[3], NumericalQuestion)
    assert questions[3].numeric_tolerance == 0.005


async def test_invalid_entries_are_skipped(session_factory, tmp_path):
    good = {
        "exam": {
            "id": "good",
            "duration_minutes": 10,
            "total_marks": 2,
            "passing_marks": 1,
            "total_questions": 1,
        },
        "questions": [
            {"id": "good-q1", "type": "TRUE_FALSE", "correct_answer": True, "marks": 2}
        ],
    }
    wrong_count = {
        "exam": {**good["exam"], "id": "wrong-count", "total_questions": 3},
        "questions": [{**good["questions"][0], "id": "wc-q1"}],
    }
    bad_type = {
        "exam": {**good["exam"], "id": "bad-type"},
        "questions": [{"id": "bt-q1", "type": "ESSAY", "correct_answer": "x", "marks": 2}],
    }
    path = tmp_path / "exams.json"
    path.write_text(json.dumps([good, wrong_count, bad_type]))

    async with session_factory() as db:
        catalog = CatalogService(db)
        assert await catalog.load_exams_from_json(path) == 1
        assert await catalog.get_exam("good") is not None
        assert await catalog.get_exam("wrong-count") is None
        assert await catalog.get_exam("bad-type") is None


async def test_unknown_exam_is_none(session_factory):
    async with session_factory() as db:
        assert await CatalogService(db).get_exam("missing") is None


async def test_corrupt_question_raises(session_factory, exam):
    async with session_factory() as db:
        await db.execute(
            update(QuestionDB).where(QuestionDB.id == "exam-1-q1").values(marks=-3)
        )
        await db.commit()

    async with session_factory() as db:
        with pytest.raises(CatalogError):
            await CatalogService(db).get_questions(exam.id)


async def test_window_offsets_are_stored_as_utc(session_factory, tmp_path):
    entry = {
        "exam": {
            "id": "offset",
            "duration_minutes": 10,
            "total_marks": 2,
            "passing_marks": 1,
            "total_questions": 1,
            "start_window": "2026-03-02T10:00:00+05:00",
            "end_window": "2026-03-02T12:00:00Z",
        },
        "questions": [
            {"id": "offset-q1", "type": "TRUE_FALSE", "correct_answer": True, "marks": 2}
        ],
    }
    path = tmp_path / "exams.json"
    path.write_text(json.dumps([entry]))

    async with session_factory() as db:
        assert await CatalogService(db).load_exams_from_json(path) == 1
        await db.commit()

    async with session_factory() as db:
        exam = await CatalogService(db).get_exam("offset")

    assert exam.start_window == datetime(2026, 3, 2, 5, 0)
    assert exam.end_window == datetime(2026, 3, 2, 12, 0)
