"""Pydantic schemas for delivery statistics."""
from pydantic import BaseModel, Field


class QueueStats(BaseModel):
    """Job counts by queue state."""

    waiting: int = Field(..., ge=0, description="Visible and unleased")
    delayed: int = Field(..., ge=0, description="Waiting for a backoff delay")
    active: int = Field(..., ge=0, description="Leased by a worker")


class StatsOverview(BaseModel):
    """Delivery statistics overview."""

    total_webhooks: int
    by_status: dict[str, int]
    dlq_count: int
    total_attempts: int
    avg_duration_ms: float
    queue: QueueStats | None = None
