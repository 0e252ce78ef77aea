"""Delivery worker pool: N worker loops plus the stalled sweep."""
import asyncio
from datetime import timedelta
import os
import socket

import structlog

from relay.database import Database
from relay.queue.base import JobQueue
from relay.workers.delivery import DeliveryProcessor, DeliveryWorker
from relay.workers.stalled_jobs import release_stalled_jobs

logger = structlog.get_logger(__name__)


class DeliveryWorkerPool:
    """
    Fixed-size pool of independent delivery workers.

    Workers share nothing in memory; the queue's lease is the only
    coordination. ``stop`` closes the HTTP adapter, the queue and (when
    given) the database, so the pool owns them for its lifetime.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: DeliveryProcessor,
        concurrency: int = 5,
        lease_duration: timedelta = timedelta(seconds=60),
        poll_interval: float = 1.0,
        sweep_interval: float = 30.0,
        database: Database | None = None,
        name: str | None = None,
    ):
        """
        Initialize the pool.

        Args:
            queue: Job queue to lease from
            processor: Shared job processor (one HTTP client for the pool)
            concurrency: Number of worker loops
            lease_duration: Lease length per job
            poll_interval: Idle wait between lease attempts, in seconds
            sweep_interval: Seconds between stalled sweeps
            database: Database handle to dispose on stop
            name: Prefix for worker ids (defaults to host and pid)
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.queue = queue
        self.processor = processor
        self.concurrency = concurrency
        self.lease_duration = lease_duration
        self.poll_interval = poll_interval
        self.sweep_interval = sweep_interval
        self.database = database
        self.name = name or f"{socket.gethostname()}-{os.getpid()}"

        self.workers: list[DeliveryWorker] = []
        self._tasks: list[asyncio.Task] = []
        self._sweep_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Spawn the worker loops and the sweep loop."""
        if self.running:
            raise RuntimeError("Worker pool already started")

        self.workers = [
            DeliveryWorker(
                worker_id=f"{self.name}-{index}",
                queue=self.queue,
                processor=self.processor,
                lease_duration=self.lease_duration,
                poll_interval=self.poll_interval,
            )
            for index in range(self.concurrency)
        ]
        self._tasks = [
            asyncio.create_task(worker.run(), name=worker.worker_id) for worker in self.workers
        ]
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name=f"{self.name}-sweep")

        logger.info(
            "worker_pool_started",
            pool=self.name,
            concurrency=self.concurrency,
            lease_seconds=self.lease_duration.total_seconds(),
        )

    async def stop(self, grace: float = 30.0) -> bool:
        """
        Stop leasing, wait for in-flight jobs, then release resources.

        Jobs still running after ``grace`` seconds are cancelled; their
        leases expire and the sweep of another process returns them to the
        queue.

        Args:
            grace: Seconds to wait for in-flight deliveries

        Returns:
            True if every worker finished within the grace period
        """
        for worker in self.workers:
            worker.stop()

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)

        clean = True
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=grace)
            if pending:
                clean = False
                logger.warning(
                    "worker_pool_grace_exceeded",
                    pool=self.name,
                    grace_seconds=grace,
                    in_flight=[w.in_flight.id for w in self.workers if w.in_flight is not None],
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self._tasks = []
        self._sweep_task = None

        await self.processor.adapter.aclose()
        await self.queue.close()
        if self.database is not None:
            await self.database.dispose()

        logger.info("worker_pool_stopped", pool=self.name, clean=clean)
        return clean

    async def _sweep_loop(self) -> None:
        """Sweep every ``sweep_interval`` seconds until cancelled; a failed pass is logged and retried."""
        while True:
            try:
                await release_stalled_jobs(self.queue)
            except Exception as e:
                logger.exception("stalled_sweep_failed", pool=self.name, exc_info=e)
            await asyncio.sleep(self.sweep_interval)
