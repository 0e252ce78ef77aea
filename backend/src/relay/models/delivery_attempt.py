"""Delivery attempt ledger."""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid

from relay.models.base import LedgerBase


class DeliveryAttempt(LedgerBase):
    """
    One HTTP delivery attempt for a webhook.

    Append-only. ``attempt_number`` restarts at 1 for each generation
    (delivery cycle); the unique constraint rejects duplicates.
    """

    __tablename__ = "delivery_attempts"
    __table_args__ = (
        UniqueConstraint("webhook_id", "generation", "attempt_number", name="uq_delivery_attempts_number"),
    )

    webhook_id = Column(Uuid, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True)
    generation = Column(Integer, nullable=False, default=1)
    attempt_number = Column(Integer, nullable=False)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)  # Truncated excerpt
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False, default=0)
    attempted_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<DeliveryAttempt(webhook_id={self.webhook_id}, generation={self.generation}, "
            f"attempt={self.attempt_number}, status={self.response_status})>"
        )
