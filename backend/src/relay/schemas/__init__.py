"""Pydantic schemas for API responses."""

from relay.schemas.dead_letter import (
    DeadLetterEntry,
    DeadLetterEntryList,
    DeadLetterRetryResponse,
)
from relay.schemas.delivery_attempt import (
    DeliveryAttempt,
    DeliveryAttemptList,
)
from relay.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from relay.schemas.stats import QueueStats, StatsOverview
from relay.schemas.webhook import Webhook, WebhookDetail, WebhookList

__all__ = [
    "DeadLetterEntry",
    "DeadLetterEntryList",
    "DeadLetterRetryResponse",
    "DeliveryAttempt",
    "DeliveryAttemptList",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "QueueStats",
    "StatsOverview",
    "Webhook",
    "WebhookDetail",
    "WebhookList",
]
