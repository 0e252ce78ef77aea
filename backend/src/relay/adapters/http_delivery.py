"""HTTP delivery adapter.

Wraps ``httpx.AsyncClient`` and maps every outcome onto the delivery error
taxonomy: a 2xx returns a ``DeliveryResponse``, anything else raises a
``TransientDeliveryError`` or ``PermanentDeliveryError`` carrying the status,
a truncated response body and the call duration.
"""
from dataclasses import dataclass
import time
from typing import Mapping

import httpx

from relay.exceptions import TransientDeliveryError
from relay.services.retry_policy import DeliveryOutcome, classify_status, error_for_status


@dataclass(frozen=True)
class DeliveryResponse:
    """Successful delivery as observed by the worker."""

    status_code: int
    body: str | None
    duration_ms: int


class WebhookHttpAdapter:
    """POSTs webhook bodies to receiver endpoints."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        excerpt_limit: int = 1000,
    ):
        """
        Initialize the adapter.

        Args:
            client: Shared client (created and owned here when omitted)
            timeout: Per-request timeout in seconds
            excerpt_limit: Characters of response body to keep
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.timeout = timeout
        self.excerpt_limit = excerpt_limit

    def excerpt(self, text: str | None) -> str | None:
        """Truncate a response body to the configured limit."""
        if text is None:
            return None
        return text[: self.excerpt_limit]

    async def post(self, url: str, body: bytes, headers: Mapping[str, str]) -> DeliveryResponse:
        """
        Deliver one request. Redirects are not followed.

        Args:
            url: Receiver endpoint
            body: Raw request body
            headers: Request headers

        Returns:
            DeliveryResponse for a 2xx

        Raises:
            TransientDeliveryError: No response (timeout, connection failure), 5xx or 429
            PermanentDeliveryError: Any other status
        """
        start = time.perf_counter()
        try:
            response = await self._client.post(
                url,
                content=body,
                headers=dict(headers),
                timeout=self.timeout,
                follow_redirects=False,
            )
        except httpx.TimeoutException as e:
            raise TransientDeliveryError(
                f"timeout of {int(self.timeout * 1000)}ms exceeded",
                duration_ms=self._elapsed_ms(start),
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransientDeliveryError(
                str(e) or type(e).__name__,
                duration_ms=self._elapsed_ms(start),
            ) from e

        duration_ms = self._elapsed_ms(start)
        body_excerpt = self.excerpt(response.text)

        if classify_status(response.status_code) != DeliveryOutcome.SUCCESS:
            raise error_for_status(
                response.status_code,
                f"Request failed with status code {response.status_code}",
                response_body=body_excerpt,
                duration_ms=duration_ms,
            )

        return DeliveryResponse(status_code=response.status_code, body=body_excerpt, duration_ms=duration_ms)

    async def aclose(self) -> None:
        """Close the underlying client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.perf_counter() - start) * 1000)
