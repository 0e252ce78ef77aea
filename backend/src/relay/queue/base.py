"""Generic job queue interface.

Any backend (a relational table, a broker, an in-memory structure) can
implement it. The delivery core only talks to ``JobQueue``.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True)
class JobHandle:
    """Snapshot of a job row as seen by the caller."""

    id: str
    webhook_id: UUID
    generation: int
    retry_profile: str
    attempts_made: int
    max_attempts: int
    next_visible_at: datetime
    lease_owner: str | None = None
    lease_token: str | None = None
    lease_expires_at: datetime | None = None
    stalled_count: int = 0
    created: bool = False

    @property
    def attempt_number(self) -> int:
        """1-based number of the attempt this lease is for."""
        return self.attempts_made + 1

    @classmethod
    def from_row(cls, row, created: bool = False) -> "JobHandle":
        return cls(
            id=row.id,
            webhook_id=row.webhook_id,
            generation=row.generation,
            retry_profile=row.retry_profile,
            attempts_made=row.attempts_made,
            max_attempts=row.max_attempts,
            next_visible_at=row.next_visible_at,
            lease_owner=row.lease_owner,
            lease_token=row.lease_token,
            lease_expires_at=row.lease_expires_at,
            stalled_count=row.stalled_count,
            created=created,
        )


@dataclass(frozen=True)
class QueueStats:
    """Job counts by queue state."""

    waiting: int
    delayed: int
    active: int

    def as_dict(self) -> dict[str, int]:
        return {"waiting": self.waiting, "delayed": self.delayed, "active": self.active}


class JobQueue(ABC):
    """
    Durable queue of delivery jobs.

    Mutating operations take an optional ``session``. When given, the work
    joins that transaction and the caller commits; otherwise the queue runs
    and commits its own.
    """

    @abstractmethod
    async def enqueue(
        self,
        webhook_id: UUID,
        profile: str = "standard",
        generation: int = 1,
        session: AsyncSession | None = None,
    ) -> JobHandle:
        """Insert a job visible immediately, or return the existing one unchanged."""

    @abstractmethod
    async def lease(self, worker_id: str, lease_duration: timedelta) -> JobHandle | None:
        """Claim the earliest visible, unleased job, or return None."""

    @abstractmethod
    async def ack(self, job_id: str, lease_token: str | None = None, session: AsyncSession | None = None) -> bool:
        """Delete a job. Returns False if it was gone or leased under another token."""

    @abstractmethod
    async def nack(
        self,
        job_id: str,
        delay: timedelta,
        lease_token: str | None = None,
        session: AsyncSession | None = None,
    ) -> bool:
        """Count the attempt, release the lease and hide the job for ``delay``."""

    @abstractmethod
    async def stalled_sweep(self) -> int:
        """Release leases that expired without ack/nack. Returns the number released."""

    @abstractmethod
    async def remove(self, webhook_id: UUID, session: AsyncSession | None = None) -> int:
        """Delete any job rows belonging to a webhook."""

    @abstractmethod
    async def get(self, webhook_id: UUID, session: AsyncSession | None = None) -> JobHandle | None:
        """Current job for a webhook, if any."""

    @abstractmethod
    async def stats(self) -> QueueStats:
        """Counts of waiting, delayed and active jobs."""

    async def close(self) -> None:
        """Release backend resources."""
