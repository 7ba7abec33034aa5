"""Tests for webhook signature verification."""

import pytest

from app.core.webhooks import (
    WebhookSignatureError,
    build_signature_header,
    compute_signature,
    verify_signature,
)

SECRET = "whsec_test"
PAYLOAD = b'{"type": "payment_intent.succeeded"}'
NOW = 1_700_000_000


def test_valid_signature_passes():
    """A header built with the right secret verifies."""
    header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
    verify_signature(PAYLOAD, header, SECRET, now=NOW + 10)


def test_any_matching_v1_signature_passes():
    """During secret rotation several v1 signatures may be sent."""
    good = compute_signature(PAYLOAD, SECRET, NOW)
    header = f"t={NOW},v1={'0' * 64},v1={good}"
    verify_signature(PAYLOAD, header, SECRET, now=NOW)


def test_tampered_payload_fails():
    """Changing the body invalidates the signature."""
    header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
    with pytest.raises(WebhookSignatureError, match="matching"):
        verify_signature(b'{"type": "charge.refunded"}', header, SECRET, now=NOW)


def test_wrong_secret_fails():
    """Signatures from another endpoint secret are rejected."""
    header = build_signature_header(PAYLOAD, "whsec_other", timestamp=NOW)
    with pytest.raises(WebhookSignatureError):
        verify_signature(PAYLOAD, header, SECRET, now=NOW)


def test_stale_timestamp_fails():
    """Deliveries older than the tolerance are replay candidates."""
    header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
    with pytest.raises(WebhookSignatureError, match="tolerance"):
        verify_signature(PAYLOAD, header, SECRET, tolerance=300, now=NOW + 301)


@pytest.mark.parametrize(
    ("header", "message"),
    [
        (None, "Missing signature header"),
        ("", "Missing signature header"),
        ("v1=abc", "Missing timestamp"),
        ("t=notanumber,v1=abc", "Invalid timestamp"),
        (f"t={NOW}", "No v1 signatures"),
        (f"t={NOW},v0=abc", "No v1 signatures"),
    ],
)
def test_malformed_headers(header, message):
    """Malformed headers are rejected with a specific reason."""
    with pytest.raises(WebhookSignatureError, match=message):
        verify_signature(PAYLOAD, header, SECRET, now=NOW)
