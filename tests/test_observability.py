"""Tests for request logging, error rendering and metrics."""

import pytest
from httpx import AsyncClient
from prometheus_client import REGISTRY

from app.middleware.logging import redact_secrets
from app.schemas.payments import PaymentOutcome
from app.services.payment_service import PaymentService


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    """Callers can correlate their request with the server logs."""
    response = await client.get("/api/v1/ping", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"

    response = await client.get("/api/v1/ping")
    assert len(response.headers["X-Request-ID"]) == 32


@pytest.mark.asyncio
async def test_unknown_route_renders_error_body(client: AsyncClient):
    """HTTP errors share the application error shape."""
    response = await client.get("/api/v1/nope")
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "HTTPException"
    assert body["path"].endswith("/api/v1/nope")


def test_redact_secrets():
    """Client secrets and tokens never reach the rendered log line."""
    event = redact_secrets(
        None,
        "info",
        {"event": "payment_intent_issued", "client_secret": "pi_1_secret", "amount": 2990},
    )
    assert event["client_secret"] == "***"
    assert event["amount"] == 2990


@pytest.mark.asyncio
async def test_payment_confirmation_metric(
    client: AsyncClient,
    auth_headers: dict,
    appointment: dict,
    fake_gateway,
    db_session,
):
    """Confirmation answers are counted by result and exposed on /metrics."""

    def confirmed_count() -> float:
        return (
            REGISTRY.get_sample_value(
                "payment_confirmations_total", {"result": "confirmed", "duplicate": "false"}
            )
            or 0.0
        )

    before = confirmed_count()

    issued = await client.post(
        "/api/v1/payments/intents",
        json={"appointment_id": str(appointment["id"])},
        headers=auth_headers,
    )
    await PaymentService(db_session, fake_gateway).confirm_payment(
        issued.json()["payment_intent_id"], PaymentOutcome.SUCCESS
    )

    assert confirmed_count() == before + 1

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "payment_confirmations_total" in response.text
    assert "payment_intents_issued_total" in response.text
