"""Pydantic schemas for the DeliveryAttempt model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class DeliveryAttempt(BaseModel):
    """Schema for returning one delivery attempt."""

    id: UUID
    webhook_id: UUID
    generation: int
    attempt_number: int
    response_status: int | None
    response_body: str | None
    error_message: str | None
    duration_ms: int
    attempted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryAttemptList(BaseModel):
    """Attempt log of one webhook, ordered by generation then attempt number."""

    webhook_id: UUID
    items: list[DeliveryAttempt]
    total: int
