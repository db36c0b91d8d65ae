"""Pydantic models for the exam attempt engine."""

from .exam import (
    ExamDefinition,
    MultipleChoiceQuestion,
    NumericalQuestion,
    Option,
    QuestionDefinition,
    QuestionType,
    ShowResultsPolicy,
    SingleChoiceQuestion,
    TrueFalseQuestion,
    question_adapter,
)
from .attempt import (
    AnswerEvaluation,
    AnswerRecord,
    AnswersRequest,
    Attempt,
    AttemptHandle,
    AttemptResult,
    AttemptState,
    AttemptStatus,
    AttemptTotals,
    QuestionReview,
    QuestionView,
    SubmissionType,
    SubmittedAnswer,
)
from .user import Principal

__all__ = [
    "ExamDefinition",
    "MultipleChoiceQuestion",
    "NumericalQuestion",
    "Option",
    "QuestionDefinition",
    "QuestionType",
    "ShowResultsPolicy",
    "SingleChoiceQuestion",
    "TrueFalseQuestion",
    "question_adapter",
    "AnswerEvaluation",
    "AnswerRecord",
    "AnswersRequest",
    "Attempt",
    "AttemptHandle",
    "AttemptResult",
    "AttemptState",
    "AttemptStatus",
    "AttemptTotals",
    "QuestionReview",
    "QuestionView",
    "SubmissionType",
    "SubmittedAnswer",
    "Principal",
]
