"""Standalone delivery worker process.

Run with ``relay-worker``. SIGINT/SIGTERM stop leasing and give in-flight
deliveries ``shutdown_grace_seconds`` to finish; the process exits with
status 1 if any had to be cancelled.
"""
import asyncio
from datetime import timedelta
import signal
import sys

import structlog
from prometheus_client import start_http_server

from relay.adapters.http_delivery import WebhookHttpAdapter
from relay.config import Settings, settings
from relay.database import Database
from relay.middleware.logging import setup_logging
from relay.queue.sql import SqlJobQueue
from relay.services.retry_policy import build_retry_profiles
from relay.tracing import setup_tracing
from relay.utils.signature import WebhookSigner
from relay.workers.delivery import DeliveryProcessor
from relay.workers.pool import DeliveryWorkerPool

logger = structlog.get_logger(__name__)


def build_pool(config: Settings, database: Database) -> DeliveryWorkerPool:
    """
    Wire the queue, HTTP adapter, signer and processor into a pool.

    Args:
        config: Application settings
        database: Database handle (disposed when the pool stops)

    Returns:
        Pool ready to ``start()``
    """
    profiles = build_retry_profiles(config)
    queue = SqlJobQueue(database.session_factory, profiles=profiles)
    adapter = WebhookHttpAdapter(
        timeout=config.delivery_timeout_seconds,
        excerpt_limit=config.response_excerpt_limit,
    )
    processor = DeliveryProcessor(
        database.session_factory,
        queue,
        adapter,
        WebhookSigner(config.webhook_secret),
        profiles=profiles,
        user_agent=config.user_agent,
    )
    return DeliveryWorkerPool(
        queue,
        processor,
        concurrency=config.worker_concurrency,
        lease_duration=timedelta(seconds=config.lease_duration_seconds),
        poll_interval=config.poll_interval_seconds,
        sweep_interval=config.stalled_sweep_interval_seconds,
        database=database,
    )


async def run(config: Settings) -> int:
    """Run the pool until a stop signal arrives. Returns the process exit code."""
    database = Database(
        config.database_url,
        echo=config.debug,
        pool_size=config.worker_concurrency + 5,
    )
    if config.otel_enabled:
        setup_tracing(engine=database.engine)

    pool = build_pool(config, database)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    if config.metrics_port:
        start_http_server(config.metrics_port)
        logger.info("metrics_server_started", port=config.metrics_port)

    await pool.start()
    await stop_requested.wait()

    logger.info("worker_shutdown_requested", grace_seconds=config.shutdown_grace_seconds)
    clean = await pool.stop(grace=config.shutdown_grace_seconds)
    return 0 if clean else 1


def main() -> None:
    """Console entrypoint."""
    setup_logging()
    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
