"""Catalog access: exam and question definitions.

The engine only reads definitions. ``create_exam`` and
``load_exams_from_json`` exist to seed a local database.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.db.models import ExamDB, QuestionDB
from exam_engine.exceptions import CatalogError
from exam_engine.models.exam import (
    ExamDefinition,
    QuestionDefinition,
    ShowResultsPolicy,
    question_adapter,
)

logger = logging.getLogger(__name__)


class CatalogService:
    """``CatalogRepository`` backed by the exams and questions tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_exam(self, exam_id: str) -> ExamDefinition | None:
        """Get an exam definition by ID."""
        result = await self.db.execute(select(ExamDB).where(ExamDB.id == exam_id))
        db_exam = result.scalar_one_or_none()
        if not db_exam:
            return None
        return self._exam_to_model(db_exam)

    async def get_questions(self, exam_id: str) -> list[QuestionDefinition]:
        """Get an exam's questions in presentation order."""
        result = await self.db.execute(
            select(QuestionDB)
            .where(QuestionDB.exam_id == exam_id)
            .order_by(QuestionDB.order, QuestionDB.id)
        )
        return [self._question_to_model(q) for q in result.scalars().all()]

    async def create_exam(
        self, exam: ExamDefinition, questions: list[QuestionDefinition]
    ) -> None:
        """Insert an exam and its questions."""
        self.db.add(
            ExamDB(
                id=exam.id,
                title=exam.title,
                duration_minutes=exam.duration_minutes,
                total_marks=exam.total_marks,
                passing_marks=exam.passing_marks,
                total_questions=exam.total_questions,
                show_results=exam.show_results.value,
                allow_review=exam.allow_review,
                partial_marking=exam.partial_marking,
                is_published=exam.is_published,
                start_window=exam.start_window,
                end_window=exam.end_window,
                max_attempts=exam.max_attempts,
            )
        )
        for question in questions:
            db_question = QuestionDB(
                id=question.id,
                exam_id=exam.id,
                order=question.order,
                type=question.type,
                text=question.text,
                marks=question.marks,
                negative_marks=question.negative_marks,
                numeric_tolerance=getattr(question, "numeric_tolerance", None),
                explanation=question.explanation,
            )
            db_question.set_options([o.model_dump() for o in getattr(question, "options", [])])
            db_question.set_correct_answer(question.correct_answer)
            self.db.add(db_question)
        await self.db.flush()

    async def load_exams_from_json(self, filepath: Path) -> int:
        """Load exams from a JSON file.

        Accepts a single ``{"exam": {...}, "questions": [...]}`` object or a
        list of them. Returns the number of exams imported.
        """
        with open(filepath) as f:
            data = json.load(f)

        entries = data if isinstance(data, list) else [data]
        count = 0
        for entry in entries:
            try:
                exam = ExamDefinition(**entry["exam"])
                questions = [question_adapter.validate_python(q) for q in entry["questions"]]
            except (KeyError, ValidationError) as e:
                logger.error(f"Skipping invalid exam in {filepath.name}: {e}")
                continue
            if len(questions) != exam.total_questions:
                logger.error(
                    f"Skipping exam {exam.id}: declares {exam.total_questions} "
                    f"questions but defines {len(questions)}"
                )
                continue
            await self.create_exam(exam, questions)
            count += 1

        return count

    def _exam_to_model(self, db_exam: ExamDB) -> ExamDefinition:
        try:
            return ExamDefinition(
                id=db_exam.id,
                title=db_exam.title,
                duration_minutes=db_exam.duration_minutes,
                total_marks=db_exam.total_marks,
                passing_marks=db_exam.passing_marks,
                total_questions=db_exam.total_questions,
                show_results=ShowResultsPolicy(db_exam.show_results),
                allow_review=db_exam.allow_review,
                partial_marking=db_exam.partial_marking,
                is_published=db_exam.is_published,
                start_window=db_exam.start_window,
                end_window=db_exam.end_window,
                max_attempts=db_exam.max_attempts,
            )
        except (ValueError, ValidationError) as e:
            raise CatalogError(f"Exam {db_exam.id} is invalid: {e}") from e

    def _question_to_model(self, db_question: QuestionDB) -> QuestionDefinition:
        data = {
            "id": db_question.id,
            "type": db_question.type,
            "text": db_question.text,
            "order": db_question.order,
            "options": db_question.get_options(),
            "correct_answer": db_question.get_correct_answer(),
            "marks": db_question.marks,
            "negative_marks": db_question.negative_marks,
            "explanation": db_question.explanation,
        }
        if db_question.numeric_tolerance is not None:
            data["numeric_tolerance"] = db_question.numeric_tolerance
        try:
            return question_adapter.validate_python(data)
        except ValidationError as e:
            raise CatalogError(f"Question {db_question.id} is invalid: {e}") from e
