"""Tests for the background deadline sweep."""

import asyncio
from datetime import timedelta

import pytest

from exam_engine.clock import utc_now
from exam_engine.models.attempt import AttemptState
from exam_engine.services.repository import SqlAttemptRepository
from exam_engine.sweeper import sweep_forever, sweep_once


async def _create(session_factory, user_id, exam_id, started_ago):
    started_at = utc_now() - started_ago
    async with session_factory() as db:
        attempt, _ = await SqlAttemptRepository(db).create_in_progress(
            user_id, exam_id, started_at=started_at, deadline_at=started_at + timedelta(minutes=60)
        )
    return attempt.id


async def _get(session_factory, attempt_id):
    async with session_factory() as db:
        return await SqlAttemptRepository(db).get_attempt(attempt_id)


async def test_sweep_once_expires_and_ranks(session_factory, exam):
    overdue = await _create(session_factory, "student-1", exam.id, timedelta(hours=2))
    live = await _create(session_factory, "student-2", exam.id, timedelta(minutes=5))

    expired = await sweep_once(session_factory)

    assert expired == [overdue]
    swept = await _get(session_factory, overdue)
    assert swept.state == AttemptState.EXPIRED
    assert swept.skipped_count == 2
    assert swept.rank == 1
    assert (await _get(session_factory, live)).state == AttemptState.IN_PROGRESS


async def test_sweep_once_with_nothing_overdue(session_factory, exam):
    await _create(session_factory, "student-1", exam.id, timedelta(minutes=1))
    assert await sweep_once(session_factory) == []


async def test_sweep_forever_keeps_running_after_errors(caplog):
    calls = 0

    def broken_factory():
        nonlocal calls
        calls += 1
        raise RuntimeError("database unavailable")

    task = asyncio.create_task(sweep_forever(broken_factory, interval=0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert calls > 1
    assert "Deadline sweep cycle failed" in caplog.text
