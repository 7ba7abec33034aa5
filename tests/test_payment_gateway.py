"""Tests for the payment processor clients."""

from urllib.parse import parse_qs

import httpx
import pytest

from app.core.exceptions import ExternalServiceException
from app.core.payment_gateway import (
    MockPaymentGateway,
    StripePaymentGateway,
    get_payment_gateway,
    is_failed_intent,
)
from app.schemas.payments import PaymentIntent


def _intent_payload(**overrides) -> dict:
    payload = {
        "id": "pi_123",
        "object": "payment_intent",
        "amount": 2990,
        "amount_received": 0,
        "currency": "lkr",
        "status": "requires_payment_method",
        "client_secret": "pi_123_secret_abc",
        "last_payment_error": None,
        "metadata": {"appointment_id": "a1"},
    }
    payload.update(overrides)
    return payload


def _gateway(handler) -> StripePaymentGateway:
    return StripePaymentGateway(
        secret_key="sk_test_123",
        api_base="https://stripe.test/v1",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_create_payment_intent_request():
    """Intents are created form-encoded with an idempotency key and basic auth."""
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json=_intent_payload())

    intent = await _gateway(handler).create_payment_intent(
        amount=2990,
        currency="LKR",
        metadata={"appointment_id": "a1"},
        idempotency_key="appointment-a1-attempt-0-2990-LKR",
    )

    assert seen["method"] == "POST"
    assert seen["url"] == "https://stripe.test/v1/payment_intents"
    assert seen["headers"]["Idempotency-Key"] == "appointment-a1-attempt-0-2990-LKR"
    assert seen["headers"]["Authorization"].startswith("Basic ")
    assert seen["form"]["amount"] == ["2990"]
    assert seen["form"]["currency"] == ["lkr"]
    assert seen["form"]["metadata[appointment_id]"] == ["a1"]
    assert seen["form"]["automatic_payment_methods[enabled]"] == ["true"]

    assert intent.id == "pi_123"
    assert intent.client_secret == "pi_123_secret_abc"
    assert intent.amount == 2990
    assert intent.currency == "LKR"


@pytest.mark.asyncio
async def test_retrieve_payment_intent_uses_amount_received():
    """Settled intents report the amount actually received."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/v1/payment_intents/pi_123"
        return httpx.Response(
            200, json=_intent_payload(status="succeeded", amount_received=2990)
        )

    intent = await _gateway(handler).retrieve_payment_intent("pi_123")

    assert intent.status == "succeeded"
    assert intent.amount == 2990


@pytest.mark.asyncio
async def test_retrieve_payment_intent_with_payment_error():
    """Decline details are carried on the intent."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=_intent_payload(last_payment_error={"message": "Your card was declined."}),
        )

    intent = await _gateway(handler).retrieve_payment_intent("pi_123")

    assert intent.last_payment_error == "Your card was declined."
    assert is_failed_intent(intent)


@pytest.mark.asyncio
async def test_processor_error_response():
    """4xx/5xx answers become ExternalServiceException with the processor's message."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": {"type": "invalid_request_error", "message": "Amount too small"}},
        )

    with pytest.raises(ExternalServiceException) as exc_info:
        await _gateway(handler).retrieve_payment_intent("pi_123")

    assert exc_info.value.status_code == 502
    assert "Amount too small" in exc_info.value.message
    assert exc_info.value.service == "stripe"


@pytest.mark.asyncio
async def test_processor_timeout():
    """Timeouts are reported as a retryable external failure."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ExternalServiceException, match="timed out"):
        await _gateway(handler).create_payment_intent(
            amount=2990, currency="LKR", metadata={}, idempotency_key="k"
        )


@pytest.mark.asyncio
async def test_processor_unreachable():
    """Connection errors are reported as a retryable external failure."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceException, match="unreachable"):
        await _gateway(handler).retrieve_payment_intent("pi_123")


def test_stripe_gateway_requires_secret_key():
    """A Stripe gateway cannot be built without a key."""
    with pytest.raises(ValueError):
        StripePaymentGateway(secret_key="")


@pytest.mark.parametrize(
    ("status", "error", "expected"),
    [
        ("succeeded", None, False),
        ("processing", None, False),
        ("requires_payment_method", None, False),
        ("requires_payment_method", "Your card was declined.", True),
        ("canceled", None, True),
    ],
)
def test_is_failed_intent(status, error, expected):
    """Only cancelled or declined intents count as failed."""
    intent = PaymentIntent(
        id="pi_1", amount=100, currency="LKR", status=status, last_payment_error=error
    )
    assert is_failed_intent(intent) is expected


@pytest.mark.asyncio
async def test_mock_gateway_is_deterministic():
    """The same idempotency key yields the same mock handle."""
    gateway = MockPaymentGateway()

    first = await gateway.create_payment_intent(2990, "lkr", {}, "appointment-x-attempt-0")
    second = await gateway.create_payment_intent(2990, "lkr", {}, "appointment-x-attempt-0")
    third = await gateway.create_payment_intent(2990, "lkr", {}, "appointment-x-attempt-1")

    assert first.id == second.id
    assert first.id != third.id
    assert first.id.startswith("mock_pi_")
    assert first.currency == "LKR"

    retrieved = await gateway.retrieve_payment_intent(first.id)
    assert retrieved.status == "succeeded"


@pytest.mark.asyncio
async def test_mock_gateway_rejects_foreign_handles():
    """Handles the mock never issued are unknown to it."""
    with pytest.raises(ExternalServiceException):
        await MockPaymentGateway().retrieve_payment_intent("pi_real_123")


def test_get_payment_gateway_uses_configured_provider():
    """Tests run with the mock provider configured."""
    assert isinstance(get_payment_gateway(), MockPaymentGateway)
