"""Retry policy: failure classification and backoff schedule.

Pure functions and value objects only; nothing here touches the queue or
the database.
"""
from dataclasses import dataclass
from datetime import timedelta
import enum

from relay.config import Settings
from relay.exceptions import DeliveryError, PermanentDeliveryError, TransientDeliveryError

EXHAUSTED_REASON = "Exhausted all retry attempts"


class DeliveryOutcome(enum.Enum):
    """Classification of one delivery attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class BackoffStrategy(enum.Enum):
    """How the delay grows between attempts."""

    EXPONENTIAL = "exponential"
    FIXED = "fixed"


def classify_status(status_code: int | None) -> DeliveryOutcome:
    """
    Classify an HTTP outcome.

    Checked in order: no response, 5xx, 429 are retryable; 2xx succeeds;
    every other status (4xx and unfollowed 1xx/3xx) is terminal.

    Args:
        status_code: Response status, or None when no response was received

    Returns:
        Delivery outcome
    """
    if status_code is None:
        return DeliveryOutcome.RETRYABLE
    if 500 <= status_code <= 599:
        return DeliveryOutcome.RETRYABLE
    if status_code == 429:
        return DeliveryOutcome.RETRYABLE
    if 200 <= status_code <= 299:
        return DeliveryOutcome.SUCCESS
    return DeliveryOutcome.TERMINAL


def error_for_status(
    status_code: int | None,
    message: str,
    response_body: str | None = None,
    duration_ms: int = 0,
) -> DeliveryError:
    """Build the transient or permanent delivery error matching a failed status."""
    if classify_status(status_code) == DeliveryOutcome.RETRYABLE:
        error_cls = TransientDeliveryError
    else:
        error_cls = PermanentDeliveryError
    return error_cls(message, status_code=status_code, response_body=response_body, duration_ms=duration_ms)


@dataclass(frozen=True)
class RetryProfile:
    """Schedule and ceiling for one job."""

    name: str
    max_attempts: int
    base_delay_ms: int
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    def delay_for(self, attempts_made: int) -> timedelta:
        """
        Backoff before the next attempt.

        Args:
            attempts_made: Attempts completed before the one that just failed (0-indexed)

        Returns:
            Delay until the job becomes visible again
        """
        if self.strategy == BackoffStrategy.FIXED:
            return timedelta(milliseconds=self.base_delay_ms)
        return timedelta(milliseconds=self.base_delay_ms * (2 ** attempts_made))


STANDARD_PROFILE = RetryProfile(name="standard", max_attempts=5, base_delay_ms=1000)
ACCELERATED_PROFILE = RetryProfile(
    name="accelerated",
    max_attempts=2,
    base_delay_ms=1500,
    strategy=BackoffStrategy.FIXED,
)


def build_retry_profiles(settings: Settings | None = None) -> dict[str, RetryProfile]:
    """
    Profiles by name, with values taken from settings when given.

    Args:
        settings: Application settings

    Returns:
        Mapping of profile name to profile
    """
    if settings is None:
        return {STANDARD_PROFILE.name: STANDARD_PROFILE, ACCELERATED_PROFILE.name: ACCELERATED_PROFILE}
    return {
        "standard": RetryProfile(
            name="standard",
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
        ),
        "accelerated": RetryProfile(
            name="accelerated",
            max_attempts=settings.accelerated_max_attempts,
            base_delay_ms=settings.accelerated_retry_delay_ms,
            strategy=BackoffStrategy.FIXED,
        ),
    }


@dataclass(frozen=True)
class RetryDecision:
    """What to do with a job after a failed attempt."""

    outcome: DeliveryOutcome
    delay: timedelta | None = None
    reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome == DeliveryOutcome.TERMINAL


class RetryPolicy:
    """Turns a failed attempt into a retry-or-quarantine decision."""

    def __init__(self, profile: RetryProfile = STANDARD_PROFILE):
        self.profile = profile

    def decide(self, error: DeliveryError, attempts_made: int, max_attempts: int | None = None) -> RetryDecision:
        """
        Decide the fate of a job whose attempt just failed.

        Args:
            error: The delivery error raised by the attempt
            attempts_made: Attempts completed before this one
            max_attempts: Ceiling stored on the job (defaults to the profile's)

        Returns:
            Terminal decision with a DLQ reason, or a retry decision with a delay
        """
        ceiling = max_attempts if max_attempts is not None else self.profile.max_attempts

        if isinstance(error, PermanentDeliveryError):
            return RetryDecision(
                outcome=DeliveryOutcome.TERMINAL,
                reason=f"Non-retryable HTTP {error.status_code} error",
            )

        if attempts_made + 1 >= ceiling:
            return RetryDecision(outcome=DeliveryOutcome.TERMINAL, reason=EXHAUSTED_REASON)

        return RetryDecision(
            outcome=DeliveryOutcome.RETRYABLE,
            delay=self.profile.delay_for(attempts_made),
        )
