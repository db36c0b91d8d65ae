"""Question evaluator.

Compares a submitted answer with a question's correct answer and returns a
verdict with signed marks. Pure and deterministic: no I/O, never raises on
a malformed answer. Each question type has one function registered in
``_EVALUATORS``.
"""

import math
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

from exam_engine.models.attempt import AnswerEvaluation
from exam_engine.models.exam import (
    MultipleChoiceQuestion,
    NumericalQuestion,
    QuestionDefinition,
    QuestionType,
    SingleChoiceQuestion,
    TrueFalseQuestion,
)


def _is_blank(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str) and not raw.strip():
        return True
    if isinstance(raw, (list, tuple, set)) and len(raw) == 0:
        return True
    return False


def _skipped(question_id: str) -> AnswerEvaluation:
    return AnswerEvaluation(
        question_id=question_id, is_correct=False, is_skipped=True, marks_awarded=0.0
    )


def _verdict(question: QuestionDefinition, is_correct: bool) -> AnswerEvaluation:
    marks = question.marks if is_correct else -question.negative_marks
    return AnswerEvaluation(
        question_id=question.id,
        is_correct=is_correct,
        is_skipped=False,
        marks_awarded=float(marks),
    )


def _evaluate_single_choice(
    question: SingleChoiceQuestion, raw: Any, partial_marking: bool
) -> AnswerEvaluation:
    if _is_blank(raw):
        return _skipped(question.id)
    if not isinstance(raw, str):
        return _verdict(question, False)
    option_ids = {o.id for o in question.options}
    selected = raw.strip()
    if option_ids and selected not in option_ids:
        return _verdict(question, False)
    return _verdict(question, selected == question.correct_answer)


def _parse_bool(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def _evaluate_true_false(
    question: TrueFalseQuestion, raw: Any, partial_marking: bool
) -> AnswerEvaluation:
    if _is_blank(raw):
        return _skipped(question.id)
    value = _parse_bool(raw)
    if value is None:
        return _verdict(question, False)
    return _verdict(question, value == question.correct_answer)


def _evaluate_multiple_choice(
    question: MultipleChoiceQuestion, raw: Any, partial_marking: bool
) -> AnswerEvaluation:
    if _is_blank(raw):
        return _skipped(question.id)
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)) or not all(isinstance(r, str) for r in raw):
        return _verdict(question, False)

    selected = sorted({r.strip() for r in raw})
    correct = sorted(set(question.correct_answer))
    if selected == correct:
        return _verdict(question, True)
    if not partial_marking:
        return _verdict(question, False)

    # Proportional credit replaces the negative mark on this path
    correct_set = set(correct)
    hits = sum(1 for s in selected if s in correct_set)
    misses = len(selected) - hits
    awarded = max(0.0, question.marks * (hits - misses) / len(correct))
    return AnswerEvaluation(
        question_id=question.id,
        is_correct=False,
        is_skipped=False,
        marks_awarded=awarded,
    )


def parse_number(raw: Any) -> Decimal | None:
    """Parse a submitted numeric answer, or None if it is not a finite number."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return None
        return Decimal(str(raw))
    if isinstance(raw, str):
        try:
            value = Decimal(raw.strip())
        except InvalidOperation:
            return None
        return value if value.is_finite() else None
    return None


def _evaluate_numerical(
    question: NumericalQuestion, raw: Any, partial_marking: bool
) -> AnswerEvaluation:
    value = parse_number(raw)
    if value is None:
        return _skipped(question.id)
    correct = Decimal(str(question.correct_answer))
    tolerance = Decimal(str(question.numeric_tolerance))
    try:
        within = abs(value - correct) <= tolerance
    except ArithmeticError:
        # Finite but beyond the decimal context's exponent range
        return _verdict(question, False)
    return _verdict(question, within)


_EVALUATORS: dict[QuestionType, Callable[[Any, Any, bool], AnswerEvaluation]] = {
    QuestionType.SINGLE_CHOICE: _evaluate_single_choice,
    QuestionType.MULTIPLE_CHOICE: _evaluate_multiple_choice,
    QuestionType.MULTIPLE_SELECT: _evaluate_multiple_choice,
    QuestionType.TRUE_FALSE: _evaluate_true_false,
    QuestionType.NUMERICAL: _evaluate_numerical,
}


def evaluate(
    question: QuestionDefinition,
    raw_answer: Any,
    partial_marking: bool = False,
) -> AnswerEvaluation:
    """Score one answer against its question.

    Args:
        question: The question definition from the catalog.
        raw_answer: The submitted answer as received, in any shape.
        partial_marking: Award proportional marks on multi-select questions.
            Only set when the exam explicitly enables it.

    Returns:
        The verdict. Skipped answers score 0, incorrect ones
        ``-negative_marks``.
    """
    handler = _EVALUATORS[QuestionType(question.type)]
    return handler(question, raw_answer, partial_marking)
