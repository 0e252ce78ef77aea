"""Integration tests for the dead letter queue and retry from it."""
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from relay.exceptions import DeadLetterEntryNotFoundError, LeaseLostError
from relay.models.dead_letter import DeadLetterEntry
from relay.models.webhook import Webhook, WebhookStatus
from relay.services.attempt_log import AttemptLog
from relay.services.dead_letter_service import DeadLetterService
from relay.services.retry_policy import DeliveryOutcome
from tests.utils.harness import Receiver, run_until_settled

LEASE = timedelta(seconds=60)


async def _dead_letter_webhook(queue, make_webhook, make_worker, clock, status_code: int = 404):
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    await run_until_settled(make_worker(Receiver(status_code)), queue, clock, webhook.id)
    return webhook


@pytest.mark.asyncio
async def test_retry_from_dead_letter_restarts_numbering(
    queue, make_webhook, make_worker, clock, database, db_session
) -> None:
    """Entry removed, webhook pending, fresh job; next attempt is numbered 1."""
    webhook = await _dead_letter_webhook(queue, make_webhook, make_worker, clock)

    async with database.session() as session:
        service = DeadLetterService(session, queue)
        entry = await service.get_entry_for_webhook(webhook.id)
        job = await service.retry_from_dead_letter(entry.id)
        await session.commit()

    assert job.created is True
    assert job.attempts_made == 0
    assert job.generation == 2
    assert job.id == f"webhook-{webhook.id}"

    stored = (
        await db_session.execute(
            select(Webhook).where(Webhook.id == webhook.id).execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert stored.status == WebhookStatus.PENDING
    assert (await db_session.execute(select(DeadLetterEntry))).scalars().all() == []

    outcomes = await run_until_settled(make_worker(Receiver(200)), queue, clock, webhook.id)
    assert outcomes == [DeliveryOutcome.SUCCESS]

    attempts = await AttemptLog(db_session).list_attempts(webhook.id)
    assert [(a.generation, a.attempt_number, a.response_status) for a in attempts] == [(1, 1, 404), (2, 1, 200)]


@pytest.mark.asyncio
async def test_retry_twice_advances_generation(queue, make_webhook, make_worker, clock, database) -> None:
    webhook = await _dead_letter_webhook(queue, make_webhook, make_worker, clock)

    for expected_generation in (2, 3):
        async with database.session() as session:
            service = DeadLetterService(session, queue)
            entry = await service.get_entry_for_webhook(webhook.id)
            job = await service.retry_from_dead_letter(entry.id, profile="accelerated")
            await session.commit()
        assert job.generation == expected_generation
        assert job.max_attempts == 2
        await run_until_settled(make_worker(Receiver(410)), queue, clock, webhook.id)


@pytest.mark.asyncio
async def test_retry_missing_entry_raises(queue, database) -> None:
    async with database.session() as session:
        with pytest.raises(DeadLetterEntryNotFoundError) as exc_info:
            await DeadLetterService(session, queue).retry_from_dead_letter(uuid4())

    assert str(exc_info.value) == "DLQ entry not found"


@pytest.mark.asyncio
async def test_retry_rolls_back_as_one_unit(queue, make_webhook, make_worker, clock, database, db_session) -> None:
    """Without a commit, none of the retry's writes become visible."""
    webhook = await _dead_letter_webhook(queue, make_webhook, make_worker, clock)

    async with database.session() as session:
        service = DeadLetterService(session, queue)
        entry = await service.get_entry_for_webhook(webhook.id)
        await service.retry_from_dead_letter(entry.id)
        await session.rollback()

    assert len((await db_session.execute(select(DeadLetterEntry))).scalars().all()) == 1
    assert await queue.get(webhook.id) is None


@pytest.mark.asyncio
async def test_move_to_dead_letter_requires_live_lease(queue, make_webhook, clock, database, db_session) -> None:
    """A worker whose lease was handed on cannot quarantine the job."""
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    stale = await queue.lease("worker-a", LEASE)
    clock.advance(seconds=61)
    await queue.stalled_sweep()
    await queue.lease("worker-b", LEASE)

    async with database.session() as session:
        stored = await session.get(Webhook, webhook.id)
        with pytest.raises(LeaseLostError):
            await DeadLetterService(session, queue).move_to_dead_letter(
                stored, stale, reason="Exhausted all retry attempts", final_error="boom"
            )
        await session.rollback()

    assert (await db_session.execute(select(DeadLetterEntry))).scalars().all() == []
    assert (await queue.get(webhook.id)).lease_owner == "worker-b"


@pytest.mark.asyncio
async def test_list_entries_paginates(queue, make_webhook, make_worker, clock, database) -> None:
    for _ in range(3):
        await _dead_letter_webhook(queue, make_webhook, make_worker, clock, status_code=400)

    async with database.session() as session:
        service = DeadLetterService(session, queue)
        first_page, total = await service.list_entries(page=1, page_size=2)
        second_page, _ = await service.list_entries(page=2, page_size=2)

    assert total == 3
    assert len(first_page) == 2
    assert len(second_page) == 1
    assert all(entry.reason == "Non-retryable HTTP 400 error" for entry in first_page + second_page)
