"""Dead letter queue entries."""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid

from relay.models.base import LedgerBase


class DeadLetterEntry(LedgerBase):
    """
    A webhook whose delivery was abandoned.

    Written in the same transaction that marks the webhook failed and
    removes its job; deleted in the same transaction that re-queues it.
    """

    __tablename__ = "dead_letter_queue"

    webhook_id = Column(Uuid, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    reason = Column(Text, nullable=False)
    final_error = Column(Text, nullable=True)
    moved_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<DeadLetterEntry(id={self.id}, webhook_id={self.webhook_id}, reason={self.reason})>"
