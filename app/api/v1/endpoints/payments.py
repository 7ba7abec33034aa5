"""Payment endpoints."""

import json
from uuid import UUID

import structlog
from fastapi import APIRouter, Request, Response, status

from app.config import settings
from app.core.exceptions import BadRequestException
from app.core.webhooks import WebhookSignatureError, verify_signature
from app.dependencies import Cache, CurrentUser, DatabaseSession, Gateway, RedisClient
from app.schemas.payments import (
    ConfirmationResult,
    PaymentConfirmationResponse,
    PaymentConfirmRequest,
    PaymentDetailsResponse,
    PaymentIntentCreate,
    PaymentIntentResponse,
    WebhookAck,
)
from app.services.payment_service import PaymentService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "/intents",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment intent for an appointment",
)
async def create_payment_intent(
    data: PaymentIntentCreate,
    current_user: CurrentUser,
    db: DatabaseSession,
    gateway: Gateway,
    redis_client: RedisClient,
    cache: Cache,
) -> PaymentIntentResponse:
    """
    Issue a transaction handle for an appointment.

    Safe to retry after a 502: the appointment is only updated once the
    processor has answered.
    """
    service = PaymentService(db, gateway, redis_client, cache)
    return await service.issue_payment_intent(data.appointment_id, current_user, data.amount)


@router.post(
    "/confirm",
    response_model=PaymentConfirmationResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm a payment with the processor",
)
async def confirm_payment(
    data: PaymentConfirmRequest,
    response: Response,
    current_user: CurrentUser,
    db: DatabaseSession,
    gateway: Gateway,
    redis_client: RedisClient,
) -> PaymentConfirmationResponse:
    """
    Ask the processor for the outcome of a handle and apply it.

    Answers 202 when the payment went through but the booking update is
    still being finalized.
    """
    service = PaymentService(db, gateway, redis_client)
    result = await service.confirm_from_processor(data.payment_intent_id, current_user)

    if result.result == ConfirmationResult.PAID_PENDING_RECONCILIATION:
        response.status_code = status.HTTP_202_ACCEPTED

    return result


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Payment processor webhook",
)
async def payment_webhook(
    request: Request,
    response: Response,
    db: DatabaseSession,
    gateway: Gateway,
    redis_client: RedisClient,
) -> WebhookAck:
    """
    Receive processor events.

    Answers 503 when the local write for a successful payment failed, so the
    processor redelivers the event.
    """
    payload = await request.body()

    if settings.stripe_webhook_secret:
        try:
            verify_signature(
                payload,
                request.headers.get("Stripe-Signature"),
                settings.stripe_webhook_secret,
                tolerance=settings.webhook_tolerance_seconds,
            )
        except WebhookSignatureError as e:
            logger.warning("webhook_signature_rejected", error=str(e))
            raise BadRequestException(f"Webhook Error: {e}")
    elif settings.is_production:
        logger.error("webhook_secret_not_configured")
        raise BadRequestException("Webhook signing secret is not configured")
    else:
        logger.warning("webhook_signature_not_verified", environment=settings.environment)

    try:
        event = json.loads(payload)
    except ValueError:
        raise BadRequestException("Webhook payload is not valid JSON")
    if not isinstance(event, dict):
        raise BadRequestException("Webhook payload must be a JSON object")

    service = PaymentService(db, gateway, redis_client)
    ack = await service.handle_webhook_event(event)

    if ack.result == ConfirmationResult.PAID_PENDING_RECONCILIATION:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ack


@router.get(
    "/appointments/{appointment_id}",
    response_model=PaymentDetailsResponse,
    status_code=status.HTTP_200_OK,
    summary="Get payment details for an appointment",
)
async def get_payment_details(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    gateway: Gateway,
    cache: Cache,
) -> PaymentDetailsResponse:
    """Amount, payment status and doctor for an appointment; clients poll this."""
    service = PaymentService(db, gateway, cache_manager=cache)
    return await service.get_payment_details(appointment_id, current_user)
