"""Integration tests for the relational job queue."""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from relay.models.delivery_job import DeliveryJob, job_id_for
from relay.queue.sql import SqlJobQueue

LEASE = timedelta(seconds=60)


@pytest.mark.asyncio
async def test_enqueue_is_idempotent(queue: SqlJobQueue, make_webhook, db_session) -> None:
    """A second enqueue returns the existing job unchanged."""
    webhook = await make_webhook()

    first = await queue.enqueue(webhook.id)
    second = await queue.enqueue(webhook.id, profile="accelerated")

    assert first.created is True
    assert second.created is False
    assert first.id == second.id == job_id_for(webhook.id) == f"webhook-{webhook.id}"
    assert second.max_attempts == 5
    assert second.retry_profile == "standard"

    rows = (await db_session.execute(select(DeliveryJob).where(DeliveryJob.webhook_id == webhook.id))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_new_job_is_visible_immediately(queue: SqlJobQueue, make_webhook, clock) -> None:
    webhook = await make_webhook()

    job = await queue.enqueue(webhook.id)

    assert job.attempts_made == 0
    assert job.generation == 1
    assert job.next_visible_at == clock.now
    assert (await queue.stats()).as_dict() == {"waiting": 1, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_accelerated_profile_stores_ceiling(queue: SqlJobQueue, make_webhook) -> None:
    webhook = await make_webhook()

    job = await queue.enqueue(webhook.id, profile="accelerated")

    assert job.max_attempts == 2
    assert job.retry_profile == "accelerated"


@pytest.mark.asyncio
async def test_unknown_profile_rejected(queue: SqlJobQueue, make_webhook) -> None:
    webhook = await make_webhook()

    with pytest.raises(ValueError):
        await queue.enqueue(webhook.id, profile="turbo")


@pytest.mark.asyncio
async def test_lease_returns_earliest_visible_job(queue: SqlJobQueue, make_webhook, clock) -> None:
    first = await make_webhook()
    second = await make_webhook()
    await queue.enqueue(first.id)
    clock.advance(seconds=1)
    await queue.enqueue(second.id)

    job = await queue.lease("worker-a", LEASE)

    assert job.webhook_id == first.id
    assert job.lease_owner == "worker-a"
    assert job.lease_token
    assert job.lease_expires_at == clock.now + LEASE
    assert job.attempt_number == 1


@pytest.mark.asyncio
async def test_jobs_visible_at_same_instant_lease_in_insertion_order(
    queue: SqlJobQueue, make_webhook, clock
) -> None:
    webhooks = [await make_webhook() for _ in range(8)]
    for webhook in webhooks:
        await queue.enqueue(webhook.id)

    leased = [await queue.lease("worker-a", LEASE) for _ in webhooks]

    assert [job.webhook_id for job in leased] == [webhook.id for webhook in webhooks]
    assert await queue.lease("worker-a", LEASE) is None


@pytest.mark.asyncio
async def test_requeued_job_goes_behind_existing_jobs(queue: SqlJobQueue, make_webhook, clock) -> None:
    """A job removed and enqueued again takes a new place in insertion order."""
    first = await make_webhook()
    second = await make_webhook()
    await queue.enqueue(first.id)
    await queue.enqueue(second.id)

    await queue.remove(first.id)
    await queue.enqueue(first.id, generation=2)

    assert (await queue.lease("worker-a", LEASE)).webhook_id == second.id
    assert (await queue.lease("worker-a", LEASE)).webhook_id == first.id


@pytest.mark.asyncio
async def test_lease_skips_leased_and_delayed_jobs(queue: SqlJobQueue, make_webhook, clock) -> None:
    webhook = await make_webhook()
    job = await queue.enqueue(webhook.id)

    leased = await queue.lease("worker-a", LEASE)
    assert leased.id == job.id
    assert await queue.lease("worker-b", LEASE) is None

    await queue.nack(leased.id, timedelta(seconds=5), lease_token=leased.lease_token)
    assert await queue.lease("worker-b", LEASE) is None
    assert (await queue.stats()).delayed == 1

    clock.advance(seconds=5)
    again = await queue.lease("worker-b", LEASE)
    assert again is not None
    assert again.attempts_made == 1
    assert again.attempt_number == 2


@pytest.mark.asyncio
async def test_concurrent_leases_never_share_a_job(queue: SqlJobQueue, make_webhook) -> None:
    """Racing lease calls against one job: exactly one wins."""
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)

    results = await asyncio.gather(queue.lease("worker-a", LEASE), queue.lease("worker-b", LEASE))

    winners = [job for job in results if job is not None]
    assert len(winners) == 1


@pytest.mark.asyncio
async def test_concurrent_leases_spread_over_jobs(queue: SqlJobQueue, make_webhook) -> None:
    webhooks = [await make_webhook(), await make_webhook()]
    for webhook in webhooks:
        await queue.enqueue(webhook.id)

    results = await asyncio.gather(*(queue.lease(f"worker-{n}", LEASE) for n in range(4)))

    winners = [job for job in results if job is not None]
    assert len(winners) == 2
    assert {job.webhook_id for job in winners} == {webhook.id for webhook in webhooks}
    assert len({job.lease_token for job in winners}) == 2


@pytest.mark.asyncio
async def test_ack_deletes_job(queue: SqlJobQueue, make_webhook) -> None:
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    job = await queue.lease("worker-a", LEASE)

    assert await queue.ack(job.id, lease_token=job.lease_token) is True
    assert await queue.get(webhook.id) is None
    assert await queue.ack(job.id) is False


@pytest.mark.asyncio
async def test_nack_counts_attempt_and_delays(queue: SqlJobQueue, make_webhook, clock) -> None:
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    job = await queue.lease("worker-a", LEASE)

    assert await queue.nack(job.id, timedelta(seconds=2), lease_token=job.lease_token) is True

    stored = await queue.get(webhook.id)
    assert stored.attempts_made == 1
    assert stored.next_visible_at == clock.now + timedelta(seconds=2)
    assert stored.lease_owner is None
    assert stored.lease_token is None
    assert stored.lease_expires_at is None


@pytest.mark.asyncio
async def test_stalled_sweep_releases_only_expired_leases(queue: SqlJobQueue, make_webhook, clock, db_session) -> None:
    """A lease is released only once its expiry is strictly in the past."""
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    job = await queue.lease("worker-a", LEASE)

    clock.advance(seconds=30)
    assert await queue.stalled_sweep() == 0

    clock.advance(seconds=30)
    assert clock.now == job.lease_expires_at
    assert await queue.stalled_sweep() == 0

    clock.advance(microseconds=1)
    assert await queue.stalled_sweep() == 1

    stored = await queue.get(webhook.id)
    assert stored.lease_owner is None
    assert stored.next_visible_at == clock.now
    assert stored.attempts_made == 0

    row = (await db_session.execute(select(DeliveryJob).where(DeliveryJob.id == job.id))).scalar_one()
    assert row.stalled_count == 1

    assert (await queue.lease("worker-b", LEASE)).id == job.id


@pytest.mark.asyncio
async def test_stale_lease_token_cannot_ack_or_nack(queue: SqlJobQueue, make_webhook, clock) -> None:
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    stale = await queue.lease("worker-a", LEASE)

    clock.advance(seconds=61)
    await queue.stalled_sweep()
    fresh = await queue.lease("worker-b", LEASE)
    assert fresh.lease_token != stale.lease_token

    assert await queue.ack(stale.id, lease_token=stale.lease_token) is False
    assert await queue.nack(stale.id, timedelta(seconds=1), lease_token=stale.lease_token) is False

    stored = await queue.get(webhook.id)
    assert stored.lease_owner == "worker-b"
    assert stored.attempts_made == 0

    assert await queue.ack(fresh.id, lease_token=fresh.lease_token) is True


@pytest.mark.asyncio
async def test_remove_and_reenqueue_starts_fresh(queue: SqlJobQueue, make_webhook) -> None:
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    job = await queue.lease("worker-a", LEASE)
    await queue.nack(job.id, timedelta(0), lease_token=job.lease_token)

    assert await queue.remove(webhook.id) == 1
    fresh = await queue.enqueue(webhook.id, generation=2)

    assert fresh.created is True
    assert fresh.attempts_made == 0
    assert fresh.generation == 2


@pytest.mark.asyncio
async def test_operations_join_caller_session(queue: SqlJobQueue, make_webhook, database) -> None:
    """Work done on a caller's session disappears with its rollback."""
    webhook = await make_webhook()

    async with database.session() as session:
        await queue.enqueue(webhook.id, session=session)
        assert await queue.get(webhook.id, session=session) is not None
        await session.rollback()

    assert await queue.get(webhook.id) is None


@pytest.mark.asyncio
async def test_stats_counts_states(queue: SqlJobQueue, make_webhook) -> None:
    webhooks = [await make_webhook() for _ in range(3)]
    for webhook in webhooks:
        await queue.enqueue(webhook.id)

    leased = await queue.lease("worker-a", LEASE)
    delayed = await queue.lease("worker-b", LEASE)
    await queue.nack(delayed.id, timedelta(minutes=1), lease_token=delayed.lease_token)

    stats = await queue.stats()

    assert leased is not None
    assert stats.as_dict() == {"waiting": 1, "delayed": 1, "active": 1}
