"""Tests for rank and percentile computation."""

import asyncio
from datetime import datetime, timedelta

import pytest

from exam_engine.models.attempt import Attempt, AttemptState, SubmittedAnswer
from exam_engine.models.user import Principal
from exam_engine.services.ranking import RankingService, compute_rankings

from conftest import ADMIN, STUDENT

T0 = datetime(2026, 3, 2, 10, 0, 0)


def _attempt(attempt_id, score, minutes_after=0):
    return Attempt(
        id=attempt_id,
        exam_id="exam-1",
        user_id=f"user-{attempt_id}",
        state=AttemptState.SUBMITTED,
        started_at=T0 - timedelta(hours=1),
        deadline_at=T0 + timedelta(hours=1),
        submitted_at=T0 + timedelta(minutes=minutes_after),
        total_marks_obtained=score,
    )


def test_rank_by_score_descending():
    rankings = compute_rankings([_attempt("a", 5), _attempt("b", 10), _attempt("c", 8)])
    assert rankings["b"][0] == 1
    assert rankings["c"][0] == 2
    assert rankings["a"][0] == 3


def test_ties_go_to_earlier_submission():
    rankings = compute_rankings(
        [_attempt("late", 8, minutes_after=5), _attempt("early", 8, minutes_after=1)]
    )
    assert rankings["early"][0] == 1
    assert rankings["late"][0] == 2


def test_percentile_is_share_scoring_strictly_lower():
    rankings = compute_rankings(
        [
            _attempt("top", 10),
            _attempt("mid-1", 8, minutes_after=1),
            _attempt("mid-2", 8, minutes_after=2),
            _attempt("low", 5),
        ]
    )
    assert rankings["top"] == (1, 75.0)
    assert rankings["mid-1"] == (2, 25.0)
    assert rankings["mid-2"] == (3, 25.0)
    assert rankings["low"] == (4, 0.0)


def test_percentile_is_rounded():
    rankings = compute_rankings([_attempt("a", 3), _attempt("b", 2), _attempt("c", 1)])
    assert rankings["a"][1] == 66.67
    assert rankings["b"][1] == 33.33


def test_empty_population():
    assert compute_rankings([]) == {}


def test_unscored_attempts_are_ignored():
    unscored = _attempt("x", None)
    rankings = compute_rankings([unscored, _attempt("a", 1)])
    assert "x" not in rankings
    assert rankings["a"] == (1, 0.0)


async def test_recompute_persists_ranks(session_factory, exam, make_service, clock):
    scores = {"alice": "B", "bob": "A", "carol": None}
    attempt_ids = {}
    for user_id, answer in scores.items():
        principal = Principal(user_id=user_id)
        service = make_service()
        handle = await service.start(principal, exam.id)
        await service.submit(
            principal,
            handle.attempt_id,
            [SubmittedAnswer(question_id=f"{exam.id}-q1", answer=answer)],
        )
        attempt_ids[user_id] = handle.attempt_id
        clock.advance(seconds=1)

    updated = await RankingService(session_factory).recompute(exam.id)
    assert updated == 3

    service = make_service()
    alice = await service.get_result(Principal(user_id="alice"), attempt_ids["alice"])
    assert alice.rank == 1
    assert alice.percentile == 66.67
    # bob scores -1 clamped to 0, carol skipped everything: tie on 0, bob finished first
    bob = await service.get_result(Principal(user_id="bob"), attempt_ids["bob"])
    carol = await service.get_result(Principal(user_id="carol"), attempt_ids["carol"])
    assert (bob.rank, carol.rank) == (2, 3)
    assert bob.percentile == carol.percentile == 0.0


async def test_abandoned_attempts_are_not_ranked(session_factory, exam, make_service):
    service = make_service()
    handle = await service.start(STUDENT, exam.id)
    await service.abandon(ADMIN, handle.attempt_id)

    assert await RankingService(session_factory).recompute(exam.id) == 0


async def test_recompute_quietly_swallows_failures(caplog):
    def broken_factory():
        raise RuntimeError("database unavailable")

    await RankingService(broken_factory).recompute_quietly("exam-1")
    assert "Ranking for exam exam-1 failed" in caplog.text


async def test_recompute_quietly_times_out(caplog):
    class SlowSession:
        async def __aenter__(self):
            await asyncio.sleep(5)

        async def __aexit__(self, *exc_info):
            return False

    service = RankingService(SlowSession, timeout=0.01)
    await service.recompute_quietly("exam-1")
    assert "timed out" in caplog.text


def test_compute_rankings_rank_is_total_order():
    population = [_attempt(str(i), 5, minutes_after=0) for i in range(4)]
    ranks = sorted(rank for rank, _ in compute_rankings(population).values())
    assert ranks == [1, 2, 3, 4]


@pytest.mark.parametrize("size", [1, 7, 50])
def test_ranks_are_contiguous(size):
    population = [_attempt(str(i), i % 3, minutes_after=i) for i in range(size)]
    ranks = sorted(rank for rank, _ in compute_rankings(population).values())
    assert ranks == list(range(1, size + 1))
