"""Payment processor webhook signature verification.

Stripe signs each delivery with a ``Stripe-Signature`` header of the form
``t=<unix timestamp>,v1=<hex hmac>[,v1=...]``. The HMAC-SHA256 is computed
over ``"<timestamp>.<raw body>"`` with the endpoint's signing secret.
"""

import hashlib
import hmac
import time

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_SCHEME = "v1"


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails."""


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    """Compute the hex HMAC-SHA256 signature for a payload."""
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header value for a payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(payload, secret, timestamp)}"


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []

    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as e:
                raise WebhookSignatureError("Invalid timestamp in signature header") from e
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)

    if timestamp is None:
        raise WebhookSignatureError("Missing timestamp in signature header")
    if not signatures:
        raise WebhookSignatureError(f"No {SIGNATURE_SCHEME} signatures in header")

    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now: float | None = None,
) -> None:
    """
    Verify a webhook delivery.

    Args:
        payload: Raw request body, exactly as received
        header: ``Stripe-Signature`` header value
        secret: Endpoint signing secret
        tolerance: Maximum accepted age of the delivery in seconds
        now: Current unix time (defaults to ``time.time()``)

    Raises:
        WebhookSignatureError: If the header is missing, malformed, stale or
            no signature matches
    """
    if not header:
        raise WebhookSignatureError("Missing signature header")

    timestamp, signatures = _parse_header(header)

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        logger.warning("webhook_timestamp_outside_tolerance", age=int(current - timestamp))
        raise WebhookSignatureError("Timestamp outside the tolerance zone")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookSignatureError("No signatures found matching the expected signature")
