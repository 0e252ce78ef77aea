"""Dead letter queue: quarantine of abandoned webhooks and retry from it."""
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from relay import metrics
from relay.exceptions import DeadLetterEntryNotFoundError, LeaseLostError, WebhookNotFoundError
from relay.models.dead_letter import DeadLetterEntry
from relay.models.webhook import Webhook
from relay.queue.base import JobHandle, JobQueue
from relay.services.attempt_log import AttemptLog
from relay.services.webhook_service import WebhookService

logger = structlog.get_logger(__name__)


class DeadLetterService:
    """
    Moves webhooks into and out of the dead letter queue.

    Both directions run entirely on the session passed in, so the status
    change, the entry and the job row change together when the caller
    commits.
    """

    def __init__(self, db: AsyncSession, queue: JobQueue):
        """
        Initialize dead letter service.

        Args:
            db: Database session (caller commits)
            queue: Job queue sharing the same database
        """
        self.db = db
        self.queue = queue
        self.webhooks = WebhookService(db)

    async def move_to_dead_letter(
        self,
        webhook: Webhook,
        job: JobHandle,
        reason: str,
        final_error: str | None = None,
    ) -> DeadLetterEntry:
        """
        Mark the webhook failed, record the entry and drop the job.

        Args:
            webhook: Pending webhook loaded on this session
            job: Leased job being finalized
            reason: Why delivery was abandoned
            final_error: Message of the last failed attempt

        Returns:
            Created entry

        Raises:
            LeaseLostError: If the job is no longer leased under ``job.lease_token``
        """
        await self.webhooks.mark_failed(webhook)

        entry = DeadLetterEntry(webhook_id=webhook.id, reason=reason, final_error=final_error)
        self.db.add(entry)
        await self.db.flush()

        if not await self.queue.ack(job.id, lease_token=job.lease_token, session=self.db):
            raise LeaseLostError(job.id)

        logger.warning(
            "webhook_dead_lettered",
            webhook_id=str(webhook.id),
            job_id=job.id,
            reason=reason,
            final_error=final_error,
            attempts=job.attempt_number,
        )

        return entry

    async def retry_from_dead_letter(self, entry_id: UUID, profile: str = "standard") -> JobHandle:
        """
        Put a dead-lettered webhook back into delivery.

        Deletes the entry, resets the webhook to pending, removes any stale
        job row and enqueues a fresh job in the next generation, so its
        first attempt is numbered 1 again.

        Args:
            entry_id: Dead letter entry ID
            profile: Retry profile for the new job

        Returns:
            The new job

        Raises:
            DeadLetterEntryNotFoundError: If the entry does not exist
        """
        entry = await self.get_entry(entry_id)
        if entry is None:
            raise DeadLetterEntryNotFoundError(entry_id)

        webhook = await self.webhooks.get_webhook(entry.webhook_id)
        if webhook is None:
            raise WebhookNotFoundError(entry.webhook_id)

        generation = await AttemptLog(self.db).latest_generation(webhook.id) + 1

        await self.db.delete(entry)
        await self.webhooks.reset_to_pending(webhook)

        removed = await self.queue.remove(webhook.id, session=self.db)
        job = await self.queue.enqueue(webhook.id, profile=profile, generation=generation, session=self.db)

        metrics.webhooks_requeued_total.inc()
        logger.info(
            "webhook_requeued_from_dead_letter",
            entry_id=str(entry_id),
            webhook_id=str(webhook.id),
            job_id=job.id,
            generation=generation,
            stale_jobs_removed=removed,
        )

        return job

    async def get_entry(self, entry_id: UUID) -> DeadLetterEntry | None:
        """Get a dead letter entry by ID."""
        result = await self.db.execute(select(DeadLetterEntry).where(DeadLetterEntry.id == entry_id))
        return result.scalar_one_or_none()

    async def get_entry_for_webhook(self, webhook_id: UUID) -> DeadLetterEntry | None:
        result = await self.db.execute(select(DeadLetterEntry).where(DeadLetterEntry.webhook_id == webhook_id))
        return result.scalar_one_or_none()

    async def list_entries(self, page: int = 1, page_size: int = 50) -> tuple[list[DeadLetterEntry], int]:
        """
        List entries, most recently moved first.

        Args:
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Tuple of (entries list, total count)
        """
        total = (await self.db.execute(select(func.count(DeadLetterEntry.id)))).scalar_one()

        result = await self.db.execute(
            select(DeadLetterEntry)
            .order_by(DeadLetterEntry.moved_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        return list(result.scalars().all()), total
