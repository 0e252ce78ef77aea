"""Queue-internal job rows."""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Uuid

from relay.database import Base


def job_id_for(webhook_id) -> str:
    """Deterministic job id for a webhook."""
    return f"webhook-{webhook_id}"


class DeliveryJob(Base):
    """
    One pending delivery cycle for a webhook.

    The primary key is derived from the webhook id, so a webhook can never
    have two job rows at once.
    """

    __tablename__ = "delivery_jobs"

    id = Column(String(64), primary_key=True)
    webhook_id = Column(Uuid, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, unique=True)
    generation = Column(Integer, nullable=False, default=1)
    retry_profile = Column(String(32), nullable=False, default="standard")
    attempts_made = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    next_visible_at = Column(DateTime, nullable=False, index=True)
    lease_owner = Column(String(128), nullable=True)
    lease_token = Column(String(64), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True, index=True)
    stalled_count = Column(Integer, nullable=False, default=0)
    # Insertion order, higher than every row present when the job was inserted
    seq = Column(BigInteger, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        """String representation."""
        return f"<DeliveryJob(id={self.id}, attempts={self.attempts_made}/{self.max_attempts}, owner={self.lease_owner})>"
