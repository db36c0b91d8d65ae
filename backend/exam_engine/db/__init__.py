"""Database layer for the exam attempt engine."""

from .database import get_db, init_db, async_session, engine
from .models import Base, ExamDB, QuestionDB, AttemptDB, AnswerRecordDB

__all__ = [
    "get_db",
    "init_db",
    "async_session",
    "engine",
    "Base",
    "ExamDB",
    "QuestionDB",
    "AttemptDB",
    "AnswerRecordDB",
]
