"""Delivery worker: executes one leased job at a time.

For each job the worker loads the webhook, sends the signed payload, writes
the attempt to the ledger in its own transaction and only then applies the
retry decision (deliver + ack, nack with backoff, or move to the dead letter
queue). If a previous worker crashed after recording the attempt, the
recorded outcome is reused instead of sending the request again.
"""
import asyncio
from dataclasses import dataclass
from datetime import timedelta

import structlog
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from relay import metrics
from relay.adapters.http_delivery import WebhookHttpAdapter
from relay.exceptions import (
    DeliveryError,
    LeaseLostError,
    PermanentDeliveryError,
    PersistenceError,
)
from relay.models.delivery_attempt import DeliveryAttempt
from relay.models.webhook import Webhook, WebhookStatus
from relay.queue.base import JobHandle, JobQueue
from relay.services.attempt_log import AttemptLog
from relay.services.dead_letter_service import DeadLetterService
from relay.services.retry_policy import (
    STANDARD_PROFILE,
    DeliveryOutcome,
    RetryPolicy,
    RetryProfile,
    build_retry_profiles,
    classify_status,
    error_for_status,
)
from relay.services.webhook_service import WebhookService
from relay.tracing import get_tracer
from relay.utils.signature import WebhookSigner, canonical_json

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


@dataclass(frozen=True)
class DeliveryRequest:
    """Everything needed to send one attempt, detached from the ORM session."""

    url: str
    body: bytes
    headers: dict[str, str]


def _outcome_of(error: DeliveryError | None) -> DeliveryOutcome:
    if error is None:
        return DeliveryOutcome.SUCCESS
    if isinstance(error, PermanentDeliveryError):
        return DeliveryOutcome.TERMINAL
    return DeliveryOutcome.RETRYABLE


class DeliveryProcessor:
    """Runs the delivery state machine for a single leased job."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        queue: JobQueue,
        adapter: WebhookHttpAdapter,
        signer: WebhookSigner,
        profiles: dict[str, RetryProfile] | None = None,
        user_agent: str = "WebhookRelay/1.0",
    ):
        """
        Initialize the processor.

        Args:
            session_factory: Session factory for webhook, attempt and DLQ writes
            queue: Queue the job was leased from
            adapter: HTTP adapter used to send the request
            signer: Signs payloads whose webhook has no stored signature
            profiles: Retry profiles by name
            user_agent: User-Agent header value
        """
        self.session_factory = session_factory
        self.queue = queue
        self.adapter = adapter
        self.signer = signer
        self.profiles = profiles or build_retry_profiles()
        self.user_agent = user_agent

    def build_request(self, webhook: Webhook) -> DeliveryRequest:
        """
        Build the outbound request. Custom webhook headers are applied last
        and may override the standard ones.
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Webhook-Id": str(webhook.id),
            "X-Webhook-Signature": webhook.signature or self.signer.sign(webhook.payload),
        }
        if webhook.headers:
            headers.update({str(key): str(value) for key, value in webhook.headers.items()})

        return DeliveryRequest(url=webhook.target_url, body=canonical_json(webhook.payload), headers=headers)

    async def process(self, job: JobHandle) -> DeliveryOutcome | None:
        """
        Process one leased job.

        Args:
            job: Job returned by ``JobQueue.lease``

        Returns:
            Outcome of the attempt, or None if the job was dropped because its
            webhook is missing or no longer pending

        Raises:
            PersistenceError: Storage failed; the lease is left to expire
            LeaseLostError: Another worker owns the job now
        """
        log = logger.bind(
            job_id=job.id,
            webhook_id=str(job.webhook_id),
            generation=job.generation,
            attempt_number=job.attempt_number,
        )

        try:
            async with self.session_factory() as db:
                webhook = await WebhookService(db).get_webhook(job.webhook_id)
                if webhook is None or webhook.status != WebhookStatus.PENDING:
                    await self._drop(db, job, webhook, log)
                    return None

                recorded = await AttemptLog(db).get_attempt(job.webhook_id, job.generation, job.attempt_number)
                request = self.build_request(webhook)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load webhook {job.webhook_id}") from e

        if recorded is not None:
            log.warning("delivery_attempt_reconciled", response_status=recorded.response_status)
            error = self._error_from_attempt(recorded)
        else:
            error = await self._deliver(job, request, log)

        return await self._finalize(job, error, log)

    async def _deliver(self, job: JobHandle, request: DeliveryRequest, log) -> DeliveryError | None:
        """Send the request and record the attempt. Returns the delivery error, if any."""
        with tracer.start_as_current_span(
            "webhook.deliver",
            attributes={
                "webhook.id": str(job.webhook_id),
                "webhook.attempt_number": job.attempt_number,
                "webhook.generation": job.generation,
                "http.url": request.url,
            },
        ) as span:
            error = None
            try:
                response = await self.adapter.post(request.url, request.body, request.headers)
                status_code, body, duration_ms = response.status_code, response.body, response.duration_ms
            except DeliveryError as e:
                error = e
                status_code, body, duration_ms = e.status_code, e.response_body, e.duration_ms
                span.set_status(Status(StatusCode.ERROR, e.message))

            if status_code is not None:
                span.set_attribute("http.status_code", status_code)

        outcome = _outcome_of(error)
        metrics.webhook_deliveries_total.labels(outcome=outcome.value).inc()
        metrics.webhook_delivery_duration_seconds.observe(duration_ms / 1000)

        log.info(
            "delivery_attempted",
            outcome=outcome.value,
            status_code=status_code,
            duration_ms=duration_ms,
            error=error.message if error else None,
        )

        try:
            async with self.session_factory() as db:
                await AttemptLog(db).record_attempt(
                    webhook_id=job.webhook_id,
                    attempt_number=job.attempt_number,
                    generation=job.generation,
                    response_status=status_code,
                    response_body=body,
                    error_message=error.message if error else None,
                    duration_ms=duration_ms,
                )
                await db.commit()
        except IntegrityError as e:
            # Same attempt number already recorded by whoever holds the job now
            raise LeaseLostError(job.id) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record attempt for webhook {job.webhook_id}") from e

        return error

    async def _finalize(self, job: JobHandle, error: DeliveryError | None, log) -> DeliveryOutcome | None:
        """Apply the result: deliver + ack, dead-letter, or nack with backoff."""
        policy = RetryPolicy(self.profiles.get(job.retry_profile, STANDARD_PROFILE))

        try:
            async with self.session_factory() as db:
                webhooks = WebhookService(db)
                webhook = await webhooks.get_webhook(job.webhook_id)
                if webhook is None or webhook.status != WebhookStatus.PENDING:
                    await self._drop(db, job, webhook, log)
                    return None

                if error is None:
                    await webhooks.mark_delivered(webhook)
                    acked = await self.queue.ack(job.id, lease_token=job.lease_token, session=db)
                    await db.commit()
                    if not acked:
                        log.warning("webhook_delivered_after_lease_lost")
                    log.info("webhook_delivered")
                    return DeliveryOutcome.SUCCESS

                decision = policy.decide(error, job.attempts_made, job.max_attempts)
                if decision.is_terminal:
                    await DeadLetterService(db, self.queue).move_to_dead_letter(
                        webhook,
                        job,
                        reason=decision.reason,
                        final_error=error.message,
                    )
                    await db.commit()
                    metrics.webhooks_dead_lettered_total.labels(
                        reason="non_retryable" if isinstance(error, PermanentDeliveryError) else "exhausted"
                    ).inc()
                    return DeliveryOutcome.TERMINAL

            if not await self.queue.nack(job.id, decision.delay, lease_token=job.lease_token):
                raise LeaseLostError(job.id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to finalize job {job.id}") from e

        log.info(
            "delivery_retry_scheduled",
            attempts_made=job.attempt_number,
            max_attempts=job.max_attempts,
            delay_ms=int(decision.delay.total_seconds() * 1000),
        )
        return DeliveryOutcome.RETRYABLE

    async def _drop(self, db, job: JobHandle, webhook: Webhook | None, log) -> None:
        """Ack a job whose webhook is gone or already finished."""
        if webhook is None:
            reason = "webhook_not_found"
            log.warning("webhook_not_found")
        else:
            reason = "webhook_not_pending"
            log.info("webhook_not_pending", status=webhook.status.value)

        await self.queue.ack(job.id, lease_token=job.lease_token, session=db)
        await db.commit()
        metrics.delivery_jobs_dropped_total.labels(reason=reason).inc()

    @staticmethod
    def _error_from_attempt(attempt: DeliveryAttempt) -> DeliveryError | None:
        """Rebuild the outcome of an attempt that was recorded but never finalized."""
        status_code = attempt.response_status
        if status_code is not None and classify_status(status_code) == DeliveryOutcome.SUCCESS:
            return None
        return error_for_status(
            status_code,
            attempt.error_message or f"Request failed with status code {status_code}",
            response_body=attempt.response_body,
            duration_ms=attempt.duration_ms,
        )


class DeliveryWorker:
    """One worker loop: lease, process, repeat until stopped."""

    def __init__(
        self,
        worker_id: str,
        queue: JobQueue,
        processor: DeliveryProcessor,
        lease_duration: timedelta = timedelta(seconds=60),
        poll_interval: float = 1.0,
    ):
        self.worker_id = worker_id
        self.queue = queue
        self.processor = processor
        self.lease_duration = lease_duration
        self.poll_interval = poll_interval
        self.in_flight: JobHandle | None = None
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        """Stop leasing new jobs; the current one is allowed to finish."""
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run_once(self) -> DeliveryOutcome | None:
        """
        Lease and process at most one job.

        Returns:
            Outcome of the processed job, or None if nothing was leased, the
            job was dropped or processing failed
        """
        job = await self.queue.lease(self.worker_id, self.lease_duration)
        if job is None:
            return None
        return await self._handle(job)

    async def run(self) -> None:
        """Loop until ``stop()``."""
        structlog.contextvars.bind_contextvars(worker_id=self.worker_id)
        logger.info("delivery_worker_started")

        while not self.stopping:
            try:
                job = await self.queue.lease(self.worker_id, self.lease_duration)
            except Exception as e:
                logger.exception("job_lease_failed", exc_info=e)
                await self._idle()
                continue

            if job is None:
                await self._idle()
                continue

            await self._handle(job)

        logger.info("delivery_worker_stopped")

    async def _handle(self, job: JobHandle) -> DeliveryOutcome | None:
        """Process a leased job; errors are logged and the job is left to its lease."""
        self.in_flight = job
        try:
            return await self.processor.process(job)
        except LeaseLostError as e:
            logger.warning("job_lease_lost", job_id=e.job_id)
        except PersistenceError as e:
            logger.error("job_persistence_failed", job_id=job.id, error=str(e), exc_info=e)
        except Exception as e:
            logger.exception("job_processing_error", job_id=job.id, exc_info=e)
        finally:
            self.in_flight = None
        return None

    async def _idle(self) -> None:
        """Sleep for the poll interval, waking early on stop."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
