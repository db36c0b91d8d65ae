"""Administrative endpoints."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.api.auth import get_admin
from exam_engine.db import get_db
from exam_engine.models.user import Principal
from exam_engine.services.attempts import AttemptService
from exam_engine.services.ranking import RankingService

from .attempts import get_ranking_service, schedule_rankings

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/sweep")
async def run_sweep(
    background_tasks: BackgroundTasks,
    principal: Annotated[Principal, Depends(get_admin)],
    db: AsyncSession = Depends(get_db),
    ranking: RankingService = Depends(get_ranking_service),
):
    """Expire overdue attempts now instead of waiting for the sweeper."""
    service = AttemptService.from_session(db)
    expired = await service.expire_overdue()
    schedule_rankings(background_tasks, ranking, service)
    return {"expired": expired, "count": len(expired)}


@router.post("/exams/{exam_id}/rankings")
async def recompute_rankings(
    exam_id: str,
    principal: Annotated[Principal, Depends(get_admin)],
    ranking: RankingService = Depends(get_ranking_service),
):
    """Recompute rank and percentile for an exam synchronously."""
    updated = await ranking.recompute(exam_id)
    return {"exam_id": exam_id, "updated": updated}
