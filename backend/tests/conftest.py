"""Pytest configuration and fixtures for async testing."""
from datetime import timedelta
import os
from typing import AsyncGenerator, Awaitable, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from relay.adapters.http_delivery import WebhookHttpAdapter
from relay.database import Database
from relay.models.webhook import Webhook
from relay.queue.sql import SqlJobQueue
from relay.services.webhook_service import WebhookService
from relay.utils.signature import WebhookSigner
from relay.workers.delivery import DeliveryProcessor, DeliveryWorker
from tests.utils.factories import WebhookFactory
from tests.utils.harness import FakeClock, Receiver

TEST_SECRET = "test-webhook-secret"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signer() -> WebhookSigner:
    return WebhookSigner(TEST_SECRET)


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """
    Fresh database per test.

    Uses a SQLite file (so concurrent sessions really are separate
    connections) unless TEST_DATABASE_URL points at PostgreSQL.

    Yields:
        Database: Handle with all tables created
    """
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'relay_test.db'}"
    db = Database(url, pool_size=5, max_overflow=5)
    await db.drop_all()
    await db.create_all()

    yield db

    await db.drop_all()
    await db.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session for arranging and inspecting state.

    Yields:
        AsyncSession: Database session for testing
    """
    async with database.session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def queue(database: Database, clock: FakeClock) -> SqlJobQueue:
    return SqlJobQueue(database.session_factory, clock=clock)


@pytest.fixture
def make_webhook(database: Database, signer: WebhookSigner) -> Callable[..., Awaitable[Webhook]]:
    """Persist a pending webhook (committed) built from WebhookFactory."""

    async def _make(**overrides) -> Webhook:
        async with database.session() as session:
            webhook = await WebhookService(session, signer).create_webhook(**WebhookFactory.create(overrides))
            await session.commit()
            return webhook

    return _make


@pytest_asyncio.fixture(scope="function")
async def make_worker(database: Database, queue: SqlJobQueue, signer: WebhookSigner):
    """Build workers whose HTTP calls go to a scripted Receiver."""
    clients: list[httpx.AsyncClient] = []

    def _make(receiver: Receiver, worker_id: str = "worker-test-0") -> DeliveryWorker:
        client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
        clients.append(client)
        processor = DeliveryProcessor(
            database.session_factory,
            queue,
            WebhookHttpAdapter(client=client),
            signer,
        )
        return DeliveryWorker(worker_id, queue, processor, lease_duration=timedelta(seconds=60))

    yield _make

    for client in clients:
        await client.aclose()
