"""Error taxonomy for the delivery core."""


class RelayError(Exception):
    """Base class for all delivery core errors."""


class DeliveryError(RelayError):
    """
    A delivery attempt did not receive a 2xx response.

    Carries whatever the attempt observed so it can be written to the
    attempt log before the retry decision is made.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        duration_ms: int = 0,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.duration_ms = duration_ms


class TransientDeliveryError(DeliveryError):
    """No response, 5xx or 429: retried on the backoff schedule."""


class PermanentDeliveryError(DeliveryError):
    """Any other non-2xx response: terminal, never retried."""


class NotFoundError(RelayError):
    """A referenced row does not exist."""


class WebhookNotFoundError(NotFoundError):
    """Webhook row absent when its job is processed."""

    def __init__(self, webhook_id):
        super().__init__(f"Webhook {webhook_id} not found")
        self.webhook_id = webhook_id


class DeadLetterEntryNotFoundError(NotFoundError):
    """DLQ entry absent when a retry is requested."""

    def __init__(self, entry_id):
        super().__init__("DLQ entry not found")
        self.entry_id = entry_id


class PersistenceError(RelayError):
    """Storage or queue became unavailable mid-operation."""


class InvalidStatusTransitionError(RelayError):
    """A webhook status change that the state machine does not allow."""

    def __init__(self, current, target):
        super().__init__(f"Cannot transition webhook from {current.value} to {target.value}")
        self.current = current
        self.target = target


class LeaseLostError(RelayError):
    """The worker's lease on a job expired and was handed to someone else."""

    def __init__(self, job_id: str):
        super().__init__(f"Lease on job {job_id} was lost")
        self.job_id = job_id
