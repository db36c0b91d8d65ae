"""Scoring aggregator: folds per-question verdicts into attempt totals."""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from exam_engine.models.attempt import AnswerEvaluation, AttemptTotals
from exam_engine.models.exam import ExamDefinition

_TWO_PLACES = Decimal("0.01")


def round_half_up(value: float | Decimal, places: Decimal = _TWO_PLACES) -> float:
    """Round to two decimal places, halves away from zero."""
    return float(Decimal(str(value)).quantize(places, rounding=ROUND_HALF_UP))


def aggregate(
    evaluations: Iterable[AnswerEvaluation],
    exam: ExamDefinition,
    clamp_to_zero: bool = True,
) -> AttemptTotals:
    """Compute attempt totals.

    Only the final sum is clamped; per-question negative marks are kept as
    awarded. Questions without an evaluation count as skipped so the three
    tallies always add up to ``exam.total_questions``.
    """
    total = Decimal("0")
    correct = 0
    incorrect = 0
    for evaluation in evaluations:
        total += Decimal(str(evaluation.marks_awarded))
        if evaluation.is_skipped:
            continue
        if evaluation.is_correct:
            correct += 1
        else:
            incorrect += 1

    if clamp_to_zero and total < 0:
        total = Decimal("0")

    skipped = exam.total_questions - correct - incorrect
    if skipped < 0:
        raise ValueError(
            f"Exam {exam.id} declares {exam.total_questions} questions "
            f"but {correct + incorrect} were answered"
        )

    obtained = float(total)
    percentage = round_half_up(total / Decimal(str(exam.total_marks)) * 100)

    return AttemptTotals(
        total_marks_obtained=obtained,
        total_marks_possible=float(exam.total_marks),
        percentage=percentage,
        is_passed=obtained >= exam.passing_marks,
        correct_count=correct,
        incorrect_count=incorrect,
        skipped_count=skipped,
    )
