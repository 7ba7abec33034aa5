"""Payment processor clients.

Two gateways share the same interface: ``StripePaymentGateway`` talks to the
Stripe REST API over httpx, ``MockPaymentGateway`` issues local ``mock_pi_``
handles for development and demos. Every network or processor failure is
raised as ``ExternalServiceException`` so callers can retry.
"""

import hashlib
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from app.config import settings
from app.core.exceptions import ExternalServiceException
from app.schemas.payments import PaymentIntent

logger = structlog.get_logger(__name__)

SUCCEEDED_INTENT_STATUS = "succeeded"
CANCELED_INTENT_STATUS = "canceled"
RETRY_INTENT_STATUS = "requires_payment_method"


def is_failed_intent(intent: PaymentIntent) -> bool:
    """
    Check whether an intent's attempt ended without money moving.

    A fresh intent also sits in ``requires_payment_method``; it only counts as
    failed once the processor has recorded a payment error on it.
    """
    if intent.status == CANCELED_INTENT_STATUS:
        return True
    return intent.status == RETRY_INTENT_STATUS and bool(intent.last_payment_error)


class PaymentGateway(ABC):
    """Interface to an external payment processor."""

    name: str = "abstract"

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        """Create a transaction handle for ``amount`` minor units of ``currency``."""

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """Fetch the current state of a transaction handle."""


class StripePaymentGateway(PaymentGateway):
    """Stripe PaymentIntents API client."""

    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client; ``transport`` allows injecting a mock transport."""
        if not secret_key:
            raise ValueError("Stripe secret key is required")
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, data=data, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("payment_processor_timeout", path=path)
            raise ExternalServiceException(
                "Payment processor timed out", service=self.name
            ) from e
        except httpx.HTTPError as e:
            logger.warning("payment_processor_unreachable", path=path, error=str(e))
            raise ExternalServiceException(
                "Payment processor is unreachable", service=self.name
            ) from e

        if response.status_code >= 400:
            try:
                error = response.json().get("error", {})
            except ValueError:
                error = {}
            message = error.get("message") or f"HTTP {response.status_code}"
            logger.warning(
                "payment_processor_error",
                path=path,
                status_code=response.status_code,
                error_type=error.get("type"),
                error=message,
            )
            raise ExternalServiceException(
                f"Payment processor error: {message}", service=self.name
            )

        return response.json()

    @staticmethod
    def _to_intent(payload: dict[str, Any]) -> PaymentIntent:
        return PaymentIntent(
            id=payload["id"],
            client_secret=payload.get("client_secret"),
            amount=payload.get("amount_received") or payload["amount"],
            currency=str(payload["currency"]).upper(),
            status=payload["status"],
            last_payment_error=(payload.get("last_payment_error") or {}).get("message"),
            metadata=payload.get("metadata") or {},
        )

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        """Create a PaymentIntent; Stripe replays the same intent for a repeated key."""
        data = {
            "amount": str(amount),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value

        payload = await self._request(
            "POST",
            "/payment_intents",
            data=data,
            headers={"Idempotency-Key": idempotency_key},
        )
        return self._to_intent(payload)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """Retrieve a PaymentIntent by id."""
        payload = await self._request("GET", f"/payment_intents/{payment_intent_id}")
        return self._to_intent(payload)


class MockPaymentGateway(PaymentGateway):
    """Prototype processor: every mock intent is treated as paid on status query."""

    name = "mock"
    PREFIX = "mock_pi_"

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> PaymentIntent:
        """Derive a deterministic handle from the idempotency key."""
        digest = hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()
        intent_id = f"{self.PREFIX}{digest[:24]}"
        return PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{digest[24:40]}",
            amount=amount,
            currency=currency.upper(),
            status=RETRY_INTENT_STATUS,
            metadata=metadata,
        )

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        """Report mock intents as succeeded; anything else is unknown to this gateway."""
        if not payment_intent_id.startswith(self.PREFIX):
            raise ExternalServiceException(
                f"Unknown mock payment intent: {payment_intent_id}", service=self.name
            )
        return PaymentIntent(
            id=payment_intent_id,
            client_secret=None,
            amount=0,
            currency=settings.payment_currency,
            status=SUCCEEDED_INTENT_STATUS,
        )


def get_payment_gateway() -> PaymentGateway:
    """Build the gateway selected by ``PAYMENT_PROVIDER``."""
    provider = settings.payment_provider.lower()
    if provider == "stripe":
        return StripePaymentGateway(
            secret_key=settings.stripe_secret_key,
            api_base=settings.stripe_api_base,
            timeout=settings.payment_timeout_seconds,
        )
    if provider == "mock":
        return MockPaymentGateway()
    raise ValueError(f"Unsupported payment provider: {settings.payment_provider}")
