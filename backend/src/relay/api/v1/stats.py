"""Delivery statistics API."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from relay.api.deps import get_db, get_job_queue
from relay.queue.base import JobQueue
from relay.schemas.stats import StatsOverview
from relay.services.stats_service import StatsService

router = APIRouter(prefix="/stats", tags=["Stats"])


@router.get("/overview", response_model=StatsOverview)
async def get_stats_overview(
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
) -> StatsOverview:
    """
    Delivery statistics.

    Webhook counts by status, dead letter count, attempt totals with average
    duration, and current queue depth.
    """
    overview = await StatsService(db, queue).overview()
    return StatsOverview.model_validate(overview)
