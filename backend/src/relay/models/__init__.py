"""SQLAlchemy ORM models for the delivery core."""
# Import all models here to ensure they are registered on the metadata

from relay.models.base import Base
from relay.models.webhook import Webhook, WebhookStatus
from relay.models.delivery_attempt import DeliveryAttempt
from relay.models.dead_letter import DeadLetterEntry
from relay.models.delivery_job import DeliveryJob, job_id_for

__all__ = [
    "Base",
    "Webhook",
    "WebhookStatus",
    "DeliveryAttempt",
    "DeadLetterEntry",
    "DeliveryJob",
    "job_id_for",
]
