"""Webhook read API: detail and attempt log."""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from relay.api.deps import get_db
from relay.models.webhook import WebhookStatus
from relay.schemas.delivery_attempt import DeliveryAttempt, DeliveryAttemptList
from relay.schemas.error import ErrorResponse
from relay.schemas.webhook import Webhook, WebhookDetail, WebhookList
from relay.services.attempt_log import AttemptLog
from relay.services.webhook_service import WebhookService

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.get("", response_model=WebhookList)
async def list_webhooks(
    status: WebhookStatus | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> WebhookList:
    """List webhooks, newest first, optionally filtered by status."""
    webhooks, total = await WebhookService(db).list_webhooks(status=status, page=page, page_size=page_size)

    return WebhookList(
        items=[Webhook.model_validate(webhook) for webhook in webhooks],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{webhook_id}", response_model=WebhookDetail, responses={404: {"model": ErrorResponse}})
async def get_webhook(
    webhook_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> WebhookDetail:
    """Get a webhook with its attempt count."""
    webhook = await WebhookService(db).get_webhook_or_raise(webhook_id)
    attempt_count = await AttemptLog(db).count_attempts(webhook_id)

    return WebhookDetail.model_validate({**Webhook.model_validate(webhook).model_dump(), "attempt_count": attempt_count})


@router.get("/{webhook_id}/attempts", response_model=DeliveryAttemptList)
async def list_webhook_attempts(
    webhook_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DeliveryAttemptList:
    """Attempt log of a webhook, ordered by generation then attempt number."""
    await WebhookService(db).get_webhook_or_raise(webhook_id)
    attempts = await AttemptLog(db).list_attempts(webhook_id)

    return DeliveryAttemptList(
        webhook_id=webhook_id,
        items=[DeliveryAttempt.model_validate(attempt) for attempt in attempts],
        total=len(attempts),
    )
