"""Append-only ledger of delivery attempts."""
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.models.delivery_attempt import DeliveryAttempt

logger = structlog.get_logger(__name__)


class AttemptLog:
    """
    Records and reads delivery attempts.

    No update or delete path exists; rows only go away when
    their webhook is deleted.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_attempt(
        self,
        webhook_id: UUID,
        attempt_number: int,
        generation: int = 1,
        response_status: int | None = None,
        response_body: str | None = None,
        error_message: str | None = None,
        duration_ms: int = 0,
    ) -> DeliveryAttempt:
        """
        Append one attempt.

        Args:
            webhook_id: Webhook the attempt belongs to
            attempt_number: 1-based number within the generation
            generation: Delivery cycle number
            response_status: HTTP status, or None when no response arrived
            response_body: Truncated response body
            error_message: Failure message, None on success
            duration_ms: Duration of the HTTP call

        Returns:
            Created attempt

        Raises:
            IntegrityError: If this (webhook, generation, attempt_number) was already recorded
        """
        attempt = DeliveryAttempt(
            webhook_id=webhook_id,
            generation=generation,
            attempt_number=attempt_number,
            response_status=response_status,
            response_body=response_body,
            error_message=error_message,
            duration_ms=duration_ms,
        )
        self.db.add(attempt)
        await self.db.flush()

        logger.info(
            "delivery_attempt_recorded",
            webhook_id=str(webhook_id),
            generation=generation,
            attempt_number=attempt_number,
            response_status=response_status,
            duration_ms=duration_ms,
        )

        return attempt

    async def get_attempt(self, webhook_id: UUID, generation: int, attempt_number: int) -> DeliveryAttempt | None:
        """Attempt with a given number in a given generation, if recorded."""
        result = await self.db.execute(
            select(DeliveryAttempt).where(
                DeliveryAttempt.webhook_id == webhook_id,
                DeliveryAttempt.generation == generation,
                DeliveryAttempt.attempt_number == attempt_number,
            )
        )
        return result.scalar_one_or_none()

    async def list_attempts(self, webhook_id: UUID) -> list[DeliveryAttempt]:
        """All attempts for a webhook, ordered by generation then attempt number."""
        result = await self.db.execute(
            select(DeliveryAttempt)
            .where(DeliveryAttempt.webhook_id == webhook_id)
            .order_by(DeliveryAttempt.generation, DeliveryAttempt.attempt_number)
        )
        return list(result.scalars().all())

    async def count_attempts(self, webhook_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(DeliveryAttempt.id)).where(DeliveryAttempt.webhook_id == webhook_id)
        )
        return result.scalar_one()

    async def latest_generation(self, webhook_id: UUID) -> int:
        """Highest generation with a recorded attempt, 0 if none."""
        result = await self.db.execute(
            select(func.max(DeliveryAttempt.generation)).where(DeliveryAttempt.webhook_id == webhook_id)
        )
        return result.scalar_one() or 0

    async def summary(self) -> tuple[int, float]:
        """Total attempt count and average duration in milliseconds."""
        result = await self.db.execute(
            select(func.count(DeliveryAttempt.id), func.avg(DeliveryAttempt.duration_ms))
        )
        total, avg_duration = result.one()
        return total, float(avg_duration or 0)
