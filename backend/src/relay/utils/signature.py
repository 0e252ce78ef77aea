"""HMAC signing for outbound webhook payloads.

Signatures are ``sha256=<hex>`` over the canonical JSON serialization of the
payload. The worker sends exactly those canonical bytes as the request body,
so a receiver can verify against the raw body it got.
"""
import hashlib
import hmac
import json
from typing import Any

SIGNATURE_PREFIX = "sha256="


def canonical_json(payload: Any) -> bytes:
    """
    Serialize a payload deterministically.

    Keys are sorted and separators are compact, so two equal documents
    always produce the same bytes regardless of key insertion order.

    Args:
        payload: JSON-serializable document

    Returns:
        UTF-8 encoded JSON bytes
    """
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class WebhookSigner:
    """Stateless HMAC-SHA256 signer keyed by a server secret."""

    def __init__(self, secret: str):
        """
        Initialize signer.

        Args:
            secret: Shared HMAC secret
        """
        if not secret:
            raise ValueError("secret must be a non-empty string")
        self._key = secret.encode("utf-8")

    def sign(self, payload: Any) -> str:
        """
        Sign a payload.

        Args:
            payload: JSON-serializable document

        Returns:
            Signature formatted as ``sha256=<hex>``
        """
        digest = hmac.new(self._key, canonical_json(payload), hashlib.sha256).hexdigest()
        return f"{SIGNATURE_PREFIX}{digest}"

    def verify(self, payload: Any, signature: str) -> bool:
        """
        Check a signature in constant time.

        Args:
            payload: JSON-serializable document
            signature: Signature received with the payload

        Returns:
            True if the signature matches, False otherwise (including malformed input)
        """
        if not isinstance(signature, str) or not signature.startswith(SIGNATURE_PREFIX):
            return False
        expected = self.sign(payload)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
