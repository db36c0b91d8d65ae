"""Exam attempt API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.api.auth import get_admin, get_principal
from exam_engine.db import async_session, get_db
from exam_engine.exceptions import AttemptAlreadyFinalized, AttemptError
from exam_engine.models.attempt import (
    AnswersRequest,
    AttemptHandle,
    AttemptResult,
    AttemptStatus,
)
from exam_engine.models.user import Principal
from exam_engine.services.attempts import AttemptService
from exam_engine.services.ranking import RankingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["attempts"])


def get_ranking_service() -> RankingService:
    return RankingService(async_session)


def schedule_rankings(
    background_tasks: BackgroundTasks, ranking: RankingService, service: AttemptService
) -> None:
    """Queue a ranking recompute for each exam whose population changed."""
    for exam_id in service.pending_rankings:
        background_tasks.add_task(ranking.recompute_quietly, exam_id)


def _http_error(e: AttemptError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/exams/{exam_id}/attempts", response_model=AttemptHandle)
async def start_attempt(
    exam_id: str,
    background_tasks: BackgroundTasks,
    principal: Annotated[Principal, Depends(get_principal)],
    db: AsyncSession = Depends(get_db),
    ranking: RankingService = Depends(get_ranking_service),
):
    """Start a new attempt, or resume the caller's live attempt.

    The returned questions never include correct answers.
    """
    service = AttemptService.from_session(db)
    try:
        handle = await service.start(principal, exam_id)
    except AttemptError as e:
        raise _http_error(e)
    schedule_rankings(background_tasks, ranking, service)
    return handle


@router.get("/attempts/{attempt_id}", response_model=AttemptStatus)
async def get_attempt_status(
    attempt_id: str,
    principal: Annotated[Principal, Depends(get_principal)],
    db: AsyncSession = Depends(get_db),
):
    """State and remaining time, for countdown reconciliation."""
    service = AttemptService.from_session(db)
    try:
        return await service.get_status(principal, attempt_id)
    except AttemptError as e:
        raise _http_error(e)


@router.put("/attempts/{attempt_id}/answers", response_model=AttemptStatus)
async def save_answers(
    attempt_id: str,
    request: AnswersRequest,
    background_tasks: BackgroundTasks,
    principal: Annotated[Principal, Depends(get_principal)],
    db: AsyncSession = Depends(get_db),
    ranking: RankingService = Depends(get_ranking_service),
):
    """Save answers in progress."""
    service = AttemptService.from_session(db)
    try:
        status = await service.save_answers(principal, attempt_id, request.answers)
    except AttemptError as e:
        raise _http_error(e)
    schedule_rankings(background_tasks, ranking, service)
    return status


@router.post("/attempts/{attempt_id}/submit", response_model=AttemptResult)
async def submit_attempt(
    attempt_id: str,
    background_tasks: BackgroundTasks,
    principal: Annotated[Principal, Depends(get_principal)],
    request: AnswersRequest | None = None,
    db: AsyncSession = Depends(get_db),
    ranking: RankingService = Depends(get_ranking_service),
):
    """Submit the attempt and get its result.

    Submitting an attempt that is already finalized returns the stored
    result, so clients can retry safely.
    """
    service = AttemptService.from_session(db)
    answers = request.answers if request else []
    try:
        result = await service.submit(principal, attempt_id, answers)
    except AttemptAlreadyFinalized as e:
        logger.info(f"Repeated submit for attempt {attempt_id}, returning stored result")
        result = e.result
    except AttemptError as e:
        raise _http_error(e)
    schedule_rankings(background_tasks, ranking, service)
    return result


@router.get("/attempts/{attempt_id}/result", response_model=AttemptResult)
async def get_attempt_result(
    attempt_id: str,
    principal: Annotated[Principal, Depends(get_principal)],
    db: AsyncSession = Depends(get_db),
):
    """Result of a finalized attempt."""
    service = AttemptService.from_session(db)
    try:
        return await service.get_result(principal, attempt_id)
    except AttemptError as e:
        raise _http_error(e)


@router.post("/attempts/{attempt_id}/abandon", response_model=AttemptResult)
async def abandon_attempt(
    attempt_id: str,
    principal: Annotated[Principal, Depends(get_admin)],
    db: AsyncSession = Depends(get_db),
):
    """Administratively close a stale attempt."""
    service = AttemptService.from_session(db)
    try:
        return await service.abandon(principal, attempt_id)
    except AttemptError as e:
        raise _http_error(e)
