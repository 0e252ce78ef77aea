"""Webhook model and its status state machine."""
from datetime import datetime
import enum

from sqlalchemy import Column, String, Enum as SQLEnum

from relay.exceptions import InvalidStatusTransitionError
from relay.models.base import Base, JSONDocument


class WebhookStatus(enum.Enum):
    """Webhook delivery status."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"

    def can_transition_to(self, target: "WebhookStatus") -> bool:
        """Whether the state machine allows moving from this status to ``target``."""
        return target in _TRANSITIONS[self]


# pending -> delivered | failed; failed -> pending (retry from DLQ); delivered is final
_TRANSITIONS: dict[WebhookStatus, frozenset[WebhookStatus]] = {
    WebhookStatus.PENDING: frozenset({WebhookStatus.DELIVERED, WebhookStatus.FAILED}),
    WebhookStatus.DELIVERED: frozenset(),
    WebhookStatus.FAILED: frozenset({WebhookStatus.PENDING}),
}


class Webhook(Base):
    """
    A caller-submitted payload to deliver to a third-party endpoint.

    Rows are created by ingestion. The delivery core only reads them and
    changes ``status`` (and with it ``updated_at``) through ``transition_to``.
    """

    __tablename__ = "webhooks"

    target_url = Column(String(500), nullable=False)
    payload = Column(JSONDocument, nullable=False)
    headers = Column(JSONDocument, nullable=True)
    signature = Column(String(255), nullable=True)
    status = Column(SQLEnum(WebhookStatus), nullable=False, default=WebhookStatus.PENDING, index=True)

    def transition_to(self, target: WebhookStatus) -> None:
        """
        Move the webhook to ``target``.

        Raises:
            InvalidStatusTransitionError: If the transition is not allowed
        """
        if not self.status.can_transition_to(target):
            raise InvalidStatusTransitionError(self.status, target)
        self.status = target
        self.updated_at = datetime.utcnow()

    def __repr__(self) -> str:
        """String representation."""
        return f"<Webhook(id={self.id}, status={self.status.value}, target_url={self.target_url})>"
