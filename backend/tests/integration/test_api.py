"""Integration tests for the operations API."""
from uuid import uuid4
import warnings

import httpx
import pytest
import pytest_asyncio

from relay.main import create_app
from relay.services.dead_letter_service import DeadLetterService
from tests.utils.harness import Receiver, run_until_settled


@pytest_asyncio.fixture
async def client(database, queue):
    app = create_app(database=database, job_queue=queue)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _dead_lettered(queue, make_webhook, make_worker, clock):
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    await run_until_settled(make_worker(Receiver(404)), queue, clock, webhook.id)
    return webhook


@pytest.mark.asyncio
async def test_health(client) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"


@pytest.mark.asyncio
async def test_readiness_reports_queue_depth(client, queue, make_webhook) -> None:
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)

    response = await client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["ready"] is True
    assert data["checks"]["database"] == "connected"
    assert data["queue"] == {"waiting": 1, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_request_id_is_echoed(client) -> None:
    response = await client.get("/health", headers={"X-Request-ID": "req_from_caller"})

    assert response.headers["X-Request-ID"] == "req_from_caller"


@pytest.mark.asyncio
async def test_stats_overview(client, queue, make_webhook, make_worker, clock) -> None:
    await _dead_lettered(queue, make_webhook, make_worker, clock)
    delivered = await make_webhook()
    await queue.enqueue(delivered.id)
    await run_until_settled(make_worker(Receiver(200)), queue, clock, delivered.id)
    await make_webhook()

    response = await client.get("/v1/stats/overview")

    assert response.status_code == 200
    data = response.json()
    assert data["total_webhooks"] == 3
    assert data["by_status"] == {"pending": 1, "delivered": 1, "failed": 1}
    assert data["dlq_count"] == 1
    assert data["total_attempts"] == 2
    assert data["avg_duration_ms"] >= 0
    assert data["queue"] == {"waiting": 0, "delayed": 0, "active": 0}


@pytest.mark.asyncio
async def test_list_dead_letters(client, queue, make_webhook, make_worker, clock) -> None:
    webhook = await _dead_lettered(queue, make_webhook, make_worker, clock)

    response = await client.get("/v1/dead-letters")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["page"] == 1
    entry = data["items"][0]
    assert entry["webhook_id"] == str(webhook.id)
    assert entry["reason"] == "Non-retryable HTTP 404 error"
    assert entry["final_error"] == "Request failed with status code 404"


@pytest.mark.asyncio
async def test_retry_dead_letter(client, database, queue, make_webhook, make_worker, clock) -> None:
    webhook = await _dead_lettered(queue, make_webhook, make_worker, clock)
    async with database.session() as session:
        entry = await DeadLetterService(session, queue).get_entry_for_webhook(webhook.id)

    response = await client.post(f"/v1/dead-letters/{entry.id}/retry")

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Webhook re-queued for retry"
    assert data["webhook_id"] == str(webhook.id)
    assert data["job_id"] == f"webhook-{webhook.id}"
    assert data["generation"] == 2

    detail = (await client.get(f"/v1/webhooks/{webhook.id}")).json()
    assert detail["status"] == "pending"
    assert (await client.get("/v1/dead-letters")).json()["total"] == 0

    job = await queue.get(webhook.id)
    assert job.attempts_made == 0
    assert job.retry_profile == "standard"


@pytest.mark.asyncio
async def test_retry_dead_letter_with_accelerated_profile(
    client, database, queue, make_webhook, make_worker, clock
) -> None:
    webhook = await _dead_lettered(queue, make_webhook, make_worker, clock)
    async with database.session() as session:
        entry = await DeadLetterService(session, queue).get_entry_for_webhook(webhook.id)

    response = await client.post(f"/v1/dead-letters/{entry.id}/retry", params={"profile": "accelerated"})

    assert response.status_code == 200
    job = await queue.get(webhook.id)
    assert job.retry_profile == "accelerated"
    assert job.max_attempts == 2


@pytest.mark.asyncio
async def test_retry_unknown_dead_letter_returns_404(client) -> None:
    response = await client.post(f"/v1/dead-letters/{uuid4()}/retry")

    assert response.status_code == 404
    data = response.json()
    assert data["error"] == "NotFound"
    assert data["message"] == "DLQ entry not found"
    assert data["details"][0]["code"] == "dead_letter_not_found"


@pytest.mark.asyncio
async def test_retry_with_invalid_id_returns_422(client) -> None:
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        response = await client.post("/v1/dead-letters/not-a-uuid/retry")

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "ValidationError"
    assert data["details"][0]["code"] == "invalid_uuid"
    assert not [w for w in caught if "HTTP_422" in str(w.message)]


@pytest.mark.asyncio
async def test_webhook_detail_and_attempts(client, queue, make_webhook, make_worker, clock) -> None:
    webhook = await make_webhook()
    await queue.enqueue(webhook.id)
    await run_until_settled(make_worker(Receiver(500, 200)), queue, clock, webhook.id)

    detail = await client.get(f"/v1/webhooks/{webhook.id}")
    assert detail.status_code == 200
    assert detail.json()["status"] == "delivered"
    assert detail.json()["attempt_count"] == 2

    attempts = await client.get(f"/v1/webhooks/{webhook.id}/attempts")
    assert attempts.status_code == 200
    data = attempts.json()
    assert data["total"] == 2
    assert [(a["attempt_number"], a["response_status"]) for a in data["items"]] == [(1, 500), (2, 200)]


@pytest.mark.asyncio
async def test_list_webhooks_filters_by_status(client, make_webhook) -> None:
    await make_webhook()
    await make_webhook()

    pending = await client.get("/v1/webhooks", params={"status": "pending"})
    delivered = await client.get("/v1/webhooks", params={"status": "delivered"})

    assert pending.json()["total"] == 2
    assert delivered.json()["total"] == 0


@pytest.mark.asyncio
async def test_unknown_webhook_returns_404(client) -> None:
    response = await client.get(f"/v1/webhooks/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["details"][0]["code"] == "webhook_not_found"


@pytest.mark.asyncio
async def test_metrics_endpoint(client) -> None:
    response = await client.get("/metrics/")

    assert response.status_code == 200
    assert "webhook_deliveries_total" in response.text
