"""Result assembler: builds the client-facing payload for a finalized attempt."""

from datetime import datetime

from exam_engine.models.attempt import (
    AnswerRecord,
    Attempt,
    AttemptResult,
    QuestionReview,
)
from exam_engine.models.exam import ExamDefinition, QuestionDefinition, ShowResultsPolicy


def results_released(exam: ExamDefinition, now: datetime) -> bool:
    """Whether a finalized attempt's score may be shown at ``now``."""
    policy = exam.show_results
    if policy == ShowResultsPolicy.NEVER:
        return False
    if policy == ShowResultsPolicy.AFTER_END_TIME:
        return exam.end_window is None or now >= exam.end_window
    return True


def _time_taken(attempt: Attempt) -> int | None:
    if attempt.submitted_at is None:
        return None
    finished = min(attempt.submitted_at, attempt.deadline_at)
    return max(0, int((finished - attempt.started_at).total_seconds()))


def build_review(
    questions: list[QuestionDefinition], records: list[AnswerRecord]
) -> list[QuestionReview]:
    by_question = {r.question_id: r for r in records}
    review = []
    for question in questions:
        record = by_question.get(question.id)
        if record is None:
            review.append(
                QuestionReview(
                    question_id=question.id,
                    correct_answer=question.correct_answer,
                    explanation=question.explanation,
                    is_correct=False,
                    is_skipped=True,
                    marks_awarded=0.0,
                )
            )
            continue
        review.append(
            QuestionReview(
                question_id=question.id,
                raw_answer=record.raw_answer,
                correct_answer=question.correct_answer,
                explanation=question.explanation,
                is_correct=record.is_correct,
                is_skipped=record.is_skipped,
                marks_awarded=record.marks_awarded,
                is_flagged_for_review=record.is_flagged_for_review,
            )
        )
    return review


def assemble_result(
    attempt: Attempt,
    exam: ExamDefinition,
    questions: list[QuestionDefinition],
    records: list[AnswerRecord],
    now: datetime,
) -> AttemptResult:
    """Build the result for a terminal attempt.

    Deferred policies produce an acknowledgement only. Per-question detail,
    including correct answers, is attached only when the exam allows review.
    """
    if not results_released(exam, now):
        return AttemptResult(
            attempt_id=attempt.id,
            exam_id=attempt.exam_id,
            state=attempt.state,
            submitted_at=attempt.submitted_at,
            submission_type=attempt.submission_type,
            results_available=False,
        )

    return AttemptResult(
        attempt_id=attempt.id,
        exam_id=attempt.exam_id,
        state=attempt.state,
        submitted_at=attempt.submitted_at,
        submission_type=attempt.submission_type,
        results_available=True,
        score=attempt.total_marks_obtained,
        total_marks=attempt.total_marks_possible,
        percentage=attempt.percentage,
        is_passed=attempt.is_passed,
        correct_count=attempt.correct_count,
        incorrect_count=attempt.incorrect_count,
        skipped_count=attempt.skipped_count,
        rank=attempt.rank,
        percentile=attempt.percentile,
        time_taken_seconds=_time_taken(attempt),
        review=build_review(questions, records) if exam.allow_review else None,
    )
