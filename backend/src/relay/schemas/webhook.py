"""Pydantic schemas for the Webhook model."""
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from relay.models.webhook import WebhookStatus


class Webhook(BaseModel):
    """Schema for returning webhook data."""

    id: UUID
    target_url: str = Field(..., description="Receiver endpoint")
    payload: dict[str, Any] = Field(..., description="JSON document delivered as the request body")
    headers: dict[str, Any] | None = Field(default=None, description="Custom headers applied last")
    signature: str | None = Field(default=None, description="sha256=<hex> HMAC of the canonical payload")
    status: WebhookStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WebhookDetail(Webhook):
    """Webhook with its delivery attempt count."""

    attempt_count: int = Field(..., ge=0, description="Attempts recorded across all generations")


class WebhookList(BaseModel):
    """Schema for paginated webhook list."""

    items: list[Webhook]
    total: int
    page: int
    page_size: int
