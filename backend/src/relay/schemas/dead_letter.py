"""Pydantic schemas for dead letter queue entries."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DeadLetterEntry(BaseModel):
    """Schema for returning a dead letter entry."""

    id: UUID
    webhook_id: UUID
    reason: str = Field(..., description="Why delivery was abandoned")
    final_error: str | None = Field(default=None, description="Message of the last failed attempt")
    moved_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeadLetterEntryList(BaseModel):
    """Schema for paginated dead letter list."""

    items: list[DeadLetterEntry]
    total: int
    page: int
    page_size: int


class DeadLetterRetryResponse(BaseModel):
    """Result of re-queuing a dead-lettered webhook."""

    message: str = "Webhook re-queued for retry"
    webhook_id: UUID
    job_id: str
    generation: int
