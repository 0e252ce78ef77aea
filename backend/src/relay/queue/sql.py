"""Job queue on a relational table.

Leasing is a conditional claim: the worker picks a candidate (skipping rows
locked by other transactions where the database supports it) and then
``UPDATE ... WHERE lease_owner IS NULL``. Only an update that touched
exactly one row owns the lease, so two workers can never hold the same job.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable
from uuid import UUID, uuid4

import structlog
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay import metrics
from relay.models.delivery_job import DeliveryJob, job_id_for
from relay.queue.base import JobHandle, JobQueue, QueueStats
from relay.services.retry_policy import RetryProfile, build_retry_profiles

logger = structlog.get_logger(__name__)

jobs = DeliveryJob.__table__


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT construct supporting ON CONFLICT DO NOTHING."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(jobs)
    if dialect == "sqlite":
        return sqlite.insert(jobs)
    raise NotImplementedError(f"SqlJobQueue does not support the {dialect} dialect")


class SqlJobQueue(JobQueue):
    """JobQueue backed by the ``delivery_jobs`` table."""

    # Candidates tried per lease call when another worker wins the claim
    LEASE_CLAIM_RETRIES = 5

    def __init__(
        self,
        session_factory: async_sessionmaker,
        profiles: dict[str, RetryProfile] | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize the queue.

        Args:
            session_factory: Session factory of the database holding the job table
            profiles: Retry profiles by name (ceiling stored on each job)
            clock: Source of "now" (naive UTC)
        """
        self._session_factory = session_factory
        self._profiles = profiles or build_retry_profiles()
        self._clock = clock

    @asynccontextmanager
    async def _unit_of_work(self, session: AsyncSession | None) -> AsyncIterator[AsyncSession]:
        """Join the caller's transaction, or run and commit our own."""
        if session is not None:
            yield session
            return

        async with self._session_factory() as db:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def _fetch(self, db: AsyncSession, *conditions) -> JobHandle | None:
        row = (await db.execute(select(jobs).where(*conditions))).first()
        return JobHandle.from_row(row) if row else None

    async def enqueue(
        self,
        webhook_id: UUID,
        profile: str = "standard",
        generation: int = 1,
        session: AsyncSession | None = None,
    ) -> JobHandle:
        """
        Insert a job for a webhook, or return the one already there.

        Args:
            webhook_id: Webhook to deliver
            profile: Retry profile name ("standard" or "accelerated")
            generation: Delivery cycle number
            session: Optional caller transaction

        Returns:
            Job handle; ``created`` is False when the job already existed

        Raises:
            ValueError: If the profile name is unknown
        """
        retry_profile = self._profiles.get(profile)
        if retry_profile is None:
            raise ValueError(f"Unknown retry profile: {profile}")

        job_id = job_id_for(webhook_id)
        now = self._clock()
        next_seq = select(func.coalesce(func.max(jobs.c.seq), 0) + 1).scalar_subquery()

        async with self._unit_of_work(session) as db:
            stmt = (
                _insert_for(db)
                .values(
                    id=job_id,
                    webhook_id=webhook_id,
                    generation=generation,
                    retry_profile=retry_profile.name,
                    attempts_made=0,
                    max_attempts=retry_profile.max_attempts,
                    next_visible_at=now,
                    stalled_count=0,
                    created_at=now,
                    seq=next_seq,
                )
                .on_conflict_do_nothing()
            )
            result = await db.execute(stmt)
            created = result.rowcount == 1

            row = (await db.execute(select(jobs).where(jobs.c.id == job_id))).first()

        if created:
            metrics.delivery_jobs_enqueued_total.labels(profile=retry_profile.name).inc()
            logger.info(
                "job_enqueued",
                job_id=job_id,
                webhook_id=str(webhook_id),
                profile=retry_profile.name,
                generation=generation,
            )
        else:
            logger.info("job_already_enqueued", job_id=job_id, webhook_id=str(webhook_id))

        return JobHandle.from_row(row, created=created)

    async def lease(self, worker_id: str, lease_duration: timedelta) -> JobHandle | None:
        """
        Claim the earliest visible job that nobody holds. Jobs visible at the
        same instant are leased in insertion order.

        Args:
            worker_id: Identifier recorded as lease owner
            lease_duration: How long the claim lasts before the sweep may release it

        Returns:
            Leased job, or None if nothing is visible
        """
        for _ in range(self.LEASE_CLAIM_RETRIES):
            now = self._clock()
            async with self._unit_of_work(None) as db:
                candidate = (
                    await db.execute(
                        select(jobs.c.id)
                        .where(
                            jobs.c.lease_owner.is_(None),
                            jobs.c.next_visible_at <= now,
                        )
                        .order_by(jobs.c.next_visible_at, jobs.c.seq)
                        .limit(1)
                        .with_for_update(skip_locked=True)
                    )
                ).scalar_one_or_none()

                if candidate is None:
                    return None

                token = uuid4().hex
                result = await db.execute(
                    update(jobs)
                    .where(jobs.c.id == candidate, jobs.c.lease_owner.is_(None))
                    .values(
                        lease_owner=worker_id,
                        lease_token=token,
                        lease_expires_at=now + lease_duration,
                    )
                )
                if result.rowcount != 1:
                    logger.debug("job_lease_contended", job_id=candidate, worker_id=worker_id)
                    continue

                job = await self._fetch(db, jobs.c.id == candidate)

            metrics.delivery_jobs_leased_total.inc()
            logger.debug(
                "job_leased",
                job_id=job.id,
                worker_id=worker_id,
                attempts_made=job.attempts_made,
                lease_expires_at=job.lease_expires_at.isoformat(),
            )
            return job

        return None

    async def ack(self, job_id: str, lease_token: str | None = None, session: AsyncSession | None = None) -> bool:
        """
        Remove a finished job.

        Args:
            job_id: Job to delete
            lease_token: When given, delete only if the lease still carries this token
            session: Optional caller transaction

        Returns:
            True if a row was deleted
        """
        conditions = [jobs.c.id == job_id]
        if lease_token is not None:
            conditions.append(jobs.c.lease_token == lease_token)

        async with self._unit_of_work(session) as db:
            result = await db.execute(delete(jobs).where(*conditions))

        acked = result.rowcount == 1
        if not acked:
            logger.warning("job_ack_ignored", job_id=job_id, reason="missing_or_lease_lost")
        return acked

    async def nack(
        self,
        job_id: str,
        delay: timedelta,
        lease_token: str | None = None,
        session: AsyncSession | None = None,
    ) -> bool:
        """
        Return a job to the queue after a failed attempt.

        Args:
            job_id: Job to release
            delay: Time before the job becomes visible again
            lease_token: When given, release only if the lease still carries this token
            session: Optional caller transaction

        Returns:
            True if the job was updated
        """
        conditions = [jobs.c.id == job_id]
        if lease_token is not None:
            conditions.append(jobs.c.lease_token == lease_token)

        next_visible_at = self._clock() + delay
        async with self._unit_of_work(session) as db:
            result = await db.execute(
                update(jobs)
                .where(*conditions)
                .values(
                    attempts_made=jobs.c.attempts_made + 1,
                    next_visible_at=next_visible_at,
                    lease_owner=None,
                    lease_token=None,
                    lease_expires_at=None,
                )
            )

        nacked = result.rowcount == 1
        if nacked:
            logger.info(
                "job_nacked",
                job_id=job_id,
                delay_ms=int(delay.total_seconds() * 1000),
                next_visible_at=next_visible_at.isoformat(),
            )
        else:
            logger.warning("job_nack_ignored", job_id=job_id, reason="missing_or_lease_lost")
        return nacked

    async def stalled_sweep(self) -> int:
        """
        Release leases whose expiry is strictly in the past.

        Returns:
            Number of jobs made visible again
        """
        now = self._clock()
        async with self._unit_of_work(None) as db:
            expired = (
                await db.execute(
                    select(jobs.c.id).where(
                        jobs.c.lease_owner.is_not(None),
                        jobs.c.lease_expires_at < now,
                    )
                )
            ).scalars().all()

            if not expired:
                return 0

            result = await db.execute(
                update(jobs)
                .where(
                    jobs.c.id.in_(expired),
                    jobs.c.lease_owner.is_not(None),
                    jobs.c.lease_expires_at < now,
                )
                .values(
                    lease_owner=None,
                    lease_token=None,
                    lease_expires_at=None,
                    next_visible_at=now,
                    stalled_count=jobs.c.stalled_count + 1,
                )
            )

        released = result.rowcount
        metrics.delivery_jobs_stalled_total.inc(released)
        logger.warning("stalled_jobs_released", count=released, job_ids=list(expired))
        return released

    async def remove(self, webhook_id: UUID, session: AsyncSession | None = None) -> int:
        """Delete any job rows for a webhook. Returns the number deleted."""
        async with self._unit_of_work(session) as db:
            result = await db.execute(delete(jobs).where(jobs.c.webhook_id == webhook_id))
        return result.rowcount

    async def get(self, webhook_id: UUID, session: AsyncSession | None = None) -> JobHandle | None:
        """Current job for a webhook, if any."""
        async with self._unit_of_work(session) as db:
            return await self._fetch(db, jobs.c.webhook_id == webhook_id)

    async def stats(self) -> QueueStats:
        """Counts of waiting, delayed and active jobs."""
        now = self._clock()
        unleased = jobs.c.lease_owner.is_(None)

        async with self._unit_of_work(None) as db:
            row = (
                await db.execute(
                    select(
                        func.coalesce(func.sum(case((unleased & (jobs.c.next_visible_at <= now), 1), else_=0)), 0),
                        func.coalesce(func.sum(case((unleased & (jobs.c.next_visible_at > now), 1), else_=0)), 0),
                        func.coalesce(func.sum(case((jobs.c.lease_owner.is_not(None), 1), else_=0)), 0),
                    )
                )
            ).one()

        return QueueStats(waiting=int(row[0]), delayed=int(row[1]), active=int(row[2]))

    async def close(self) -> None:
        """Nothing to release: the database handle owns the connections."""
        logger.info("job_queue_closed")
