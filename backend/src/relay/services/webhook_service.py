"""Service for reading webhooks and moving them through their status machine."""
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.exceptions import WebhookNotFoundError
from relay.models.webhook import Webhook, WebhookStatus
from relay.utils.signature import WebhookSigner

logger = structlog.get_logger(__name__)


class WebhookService:
    """Webhook reads and the only legal status writes."""

    def __init__(self, db: AsyncSession, signer: WebhookSigner | None = None):
        """
        Initialize webhook service.

        Args:
            db: Database session
            signer: Signer used by ``create_webhook``
        """
        self.db = db
        self.signer = signer

    async def create_webhook(
        self,
        target_url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> Webhook:
        """
        Insert a pending webhook with its signature.

        This is what ingestion does before calling ``JobQueue.enqueue``.

        Args:
            target_url: Receiver endpoint
            payload: JSON document to deliver
            headers: Extra request headers, applied after the standard ones

        Returns:
            Created webhook

        Raises:
            ValueError: If the service was built without a signer
        """
        if self.signer is None:
            raise ValueError("create_webhook requires a signer")

        webhook = Webhook(
            target_url=target_url,
            payload=payload,
            headers=headers,
            signature=self.signer.sign(payload),
            status=WebhookStatus.PENDING,
        )

        self.db.add(webhook)
        await self.db.flush()
        await self.db.refresh(webhook)

        logger.info("webhook_created", webhook_id=str(webhook.id), target_url=target_url)

        return webhook

    async def get_webhook(self, webhook_id: UUID) -> Webhook | None:
        """
        Get webhook by ID.

        Args:
            webhook_id: Webhook UUID

        Returns:
            Webhook or None if not found
        """
        result = await self.db.execute(select(Webhook).where(Webhook.id == webhook_id))
        return result.scalar_one_or_none()

    async def get_webhook_or_raise(self, webhook_id: UUID) -> Webhook:
        """Get webhook by ID, raising WebhookNotFoundError if absent."""
        webhook = await self.get_webhook(webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(webhook_id)
        return webhook

    async def mark_delivered(self, webhook: Webhook) -> None:
        """pending -> delivered."""
        webhook.transition_to(WebhookStatus.DELIVERED)
        await self.db.flush()
        logger.info("webhook_marked_delivered", webhook_id=str(webhook.id))

    async def mark_failed(self, webhook: Webhook) -> None:
        """pending -> failed."""
        webhook.transition_to(WebhookStatus.FAILED)
        await self.db.flush()
        logger.info("webhook_marked_failed", webhook_id=str(webhook.id))

    async def reset_to_pending(self, webhook: Webhook) -> None:
        """failed -> pending (retry from the dead letter queue)."""
        webhook.transition_to(WebhookStatus.PENDING)
        await self.db.flush()
        logger.info("webhook_reset_to_pending", webhook_id=str(webhook.id))

    async def list_webhooks(
        self,
        status: WebhookStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Webhook], int]:
        """
        List webhooks with optional status filter and pagination.

        Args:
            status: Filter by status (optional)
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Tuple of (webhooks list, total count)
        """
        conditions = []
        if status:
            conditions.append(Webhook.status == status)

        total = (await self.db.execute(select(func.count(Webhook.id)).where(*conditions))).scalar_one()

        query = (
            select(Webhook)
            .where(*conditions)
            .order_by(Webhook.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.db.execute(query)

        return list(result.scalars().all()), total
