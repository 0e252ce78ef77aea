"""Dead letter queue API."""
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from relay.api.deps import get_db, get_job_queue
from relay.queue.base import JobQueue
from relay.schemas.dead_letter import DeadLetterEntry, DeadLetterEntryList, DeadLetterRetryResponse
from relay.schemas.error import ErrorResponse
from relay.services.dead_letter_service import DeadLetterService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/dead-letters", tags=["Dead Letters"])


@router.get("", response_model=DeadLetterEntryList)
async def list_dead_letters(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
) -> DeadLetterEntryList:
    """List dead-lettered webhooks, most recent first."""
    entries, total = await DeadLetterService(db, queue).list_entries(page=page, page_size=page_size)

    return DeadLetterEntryList(
        items=[DeadLetterEntry.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/{entry_id}/retry",
    response_model=DeadLetterRetryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def retry_dead_letter(
    entry_id: UUID,
    profile: Literal["standard", "accelerated"] = Query(default="standard"),
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
) -> DeadLetterRetryResponse:
    """
    Re-queue a dead-lettered webhook.

    Removes the entry, resets the webhook to pending and enqueues a fresh
    job whose first attempt is numbered 1. Returns 404 if the entry does
    not exist.
    """
    job = await DeadLetterService(db, queue).retry_from_dead_letter(entry_id, profile=profile)
    await db.commit()

    logger.info("dead_letter_retry_requested", entry_id=str(entry_id), job_id=job.id, profile=profile)

    return DeadLetterRetryResponse(webhook_id=job.webhook_id, job_id=job.id, generation=job.generation)
