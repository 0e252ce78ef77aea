"""Aggregate delivery statistics for the operations API."""
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.models.dead_letter import DeadLetterEntry
from relay.models.webhook import Webhook, WebhookStatus
from relay.queue.base import JobQueue
from relay.services.attempt_log import AttemptLog


class StatsService:
    """Counts by status, DLQ size, attempt totals and queue depth."""

    def __init__(self, db: AsyncSession, queue: JobQueue | None = None):
        self.db = db
        self.queue = queue

    async def overview(self) -> dict[str, Any]:
        """
        Build the stats overview.

        Returns:
            Dict with total_webhooks, by_status (every status present, zero
            filled), dlq_count, total_attempts, avg_duration_ms and queue
        """
        rows = await self.db.execute(select(Webhook.status, func.count(Webhook.id)).group_by(Webhook.status))
        by_status = {status.value: 0 for status in WebhookStatus}
        for status, count in rows.all():
            by_status[status.value] = count

        dlq_count = (await self.db.execute(select(func.count(DeadLetterEntry.id)))).scalar_one()
        total_attempts, avg_duration_ms = await AttemptLog(self.db).summary()

        queue_stats = None
        if self.queue is not None:
            queue_stats = (await self.queue.stats()).as_dict()

        return {
            "total_webhooks": sum(by_status.values()),
            "by_status": by_status,
            "dlq_count": dlq_count,
            "total_attempts": total_attempts,
            "avg_duration_ms": round(avg_duration_ms, 2),
            "queue": queue_stats,
        }
