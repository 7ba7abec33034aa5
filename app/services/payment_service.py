"""Appointment payment flow.

Issuing a payment intent, applying the processor's outcome for a transaction
handle and reconciling the appointment lifecycle with it.

Every payment-status change is a compare-and-set on the current
``payment_status`` so duplicate deliveries of the same outcome apply once.
The ``paid`` transition and the ``confirmed`` lifecycle change are written in
one transaction; if that write fails after the processor has already taken
the money, the result is ``paid_pending_reconciliation`` and
``reconcile_pending_payments`` re-applies it later from the processor's state.
"""

from typing import Any
from uuid import UUID

import redis
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictException,
    ExternalServiceException,
    ForbiddenException,
    InvalidInputException,
)
from app.core.metrics import (
    PAYMENT_CONFIRMATIONS,
    PAYMENT_INTENTS_ISSUED,
    PAYMENT_PROCESSOR_ERRORS,
)
from app.core.payment_gateway import (
    SUCCEEDED_INTENT_STATUS,
    PaymentGateway,
    is_failed_intent,
)
from app.core.redis_client import CacheManager
from app.core.timeutils import utcnow
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentResponse, AppointmentStatus, PaymentStatus
from app.schemas.notifications import NotificationType
from app.schemas.payments import (
    ConfirmationResult,
    PaymentConfirmationResponse,
    PaymentDetailsResponse,
    PaymentIntent,
    PaymentIntentResponse,
    PaymentOutcome,
    PaymentRecord,
    ReconciliationReport,
    WebhookAck,
)
from app.services.appointment_service import AppointmentService, is_admin
from app.services.doctor_service import DoctorService
from app.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)

SUCCEEDED_EVENT = "payment_intent.succeeded"
FAILED_EVENT = "payment_intent.payment_failed"

_MESSAGES = {
    ConfirmationResult.CONFIRMED: "Payment received. Your appointment is confirmed.",
    ConfirmationResult.PAID_PENDING_RECONCILIATION: (
        "Payment received. Your booking confirmation is being finalized."
    ),
    ConfirmationResult.FAILED: "Payment not completed, please retry.",
    ConfirmationResult.NOT_FOUND: "No appointment matches this payment.",
    ConfirmationResult.PROCESSING: "Payment is still being processed.",
    ConfirmationResult.CANCELLED: "Payment received for a cancelled appointment.",
}


def result_for_state(appointment: dict[str, Any]) -> ConfirmationResult:
    """Map an appointment's current state onto the emitted final status."""
    payment_status = appointment["payment_status"]
    status = appointment["status"]

    if payment_status == PaymentStatus.FAILED.value:
        return ConfirmationResult.FAILED
    if payment_status == PaymentStatus.PENDING.value:
        return ConfirmationResult.PROCESSING
    if status == AppointmentStatus.CANCELLED.value:
        return ConfirmationResult.CANCELLED
    if status in (AppointmentStatus.CONFIRMED.value, AppointmentStatus.COMPLETED.value):
        return ConfirmationResult.CONFIRMED
    return ConfirmationResult.PAID_PENDING_RECONCILIATION


class PaymentService:
    """Service tying appointments to the external payment processor."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        redis_client: redis.Redis | None = None,
        cache_manager: CacheManager | None = None,
    ):
        """Initialize service with database session, gateway and optional Redis collaborators."""
        self.db = db
        self.gateway = gateway
        self.redis = redis_client
        self.appointments = AppointmentService(db, redis_client, cache_manager)
        self.doctors = DoctorService(cache_manager=cache_manager)

    def _response(
        self,
        payment_intent_id: str,
        result: ConfirmationResult,
        appointment: dict[str, Any] | None = None,
        duplicate: bool = False,
    ) -> PaymentConfirmationResponse:
        PAYMENT_CONFIRMATIONS.labels(result=result.value, duplicate=str(duplicate).lower()).inc()
        return PaymentConfirmationResponse(
            result=result,
            payment_intent_id=payment_intent_id,
            message=_MESSAGES[result],
            duplicate=duplicate,
            appointment=AppointmentResponse.model_validate(appointment) if appointment else None,
        )

    async def _consultation_amount(self, doctor_id: UUID) -> int:
        doctor = await self.doctors.get_doctor_by_id(self.db, doctor_id)
        if doctor and doctor.get("consultation_fee"):
            return int(doctor["consultation_fee"])
        return settings.default_consultation_fee

    async def get_by_payment_intent(self, payment_intent_id: str) -> dict[str, Any] | None:
        """Find the appointment that stores a transaction handle."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.payment_intent_id == payment_intent_id)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def _retrieve_intent(self, payment_intent_id: str) -> PaymentIntent:
        try:
            return await self.gateway.retrieve_payment_intent(payment_intent_id)
        except ExternalServiceException:
            PAYMENT_PROCESSOR_ERRORS.labels(provider=self.gateway.name, operation="retrieve").inc()
            raise

    async def _resume_stored_intent(
        self,
        appointment: dict[str, Any],
        amount: int,
        currency: str,
    ) -> PaymentIntentResponse | None:
        """
        Settle the handle a pending appointment already holds before issuing another.

        The payer may still complete the stored intent with the client secret
        they were given, so it is never silently replaced. A succeeded intent is
        applied and the request conflicts. A failed one is applied so that a new
        attempt can follow. An open one is handed back for the same amount and
        blocks a different one.

        Returns:
            The stored handle to reuse, or None when a new intent is needed
        """
        intent = await self._retrieve_intent(appointment["payment_intent_id"])

        if intent.status == SUCCEEDED_INTENT_STATUS:
            await self.apply_intent_status(intent)
            raise ConflictException("Payment has already been completed for this appointment")

        if is_failed_intent(intent):
            await self.apply_intent_status(intent)
            return None

        if intent.amount != amount or intent.currency.upper() != currency:
            logger.warning(
                "payment_intent_amount_mismatch",
                appointment_id=str(appointment["id"]),
                payment_intent_id=intent.id,
                stored_amount=intent.amount,
                requested_amount=amount,
            )
            raise ConflictException(
                f"A payment of {intent.amount} {intent.currency.upper()} is already "
                "in progress for this appointment"
            )

        logger.info(
            "payment_intent_resumed",
            appointment_id=str(appointment["id"]),
            payment_intent_id=intent.id,
            status=intent.status,
        )
        return PaymentIntentResponse(
            appointment_id=appointment["id"],
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=currency,
            provider=self.gateway.name,
        )

    async def issue_payment_intent(
        self,
        appointment_id: UUID,
        user: dict,
        amount: int | None = None,
    ) -> PaymentIntentResponse:
        """
        Obtain a transaction handle from the processor and store it on the appointment.

        Args:
            appointment_id: Appointment to pay for
            user: Authenticated requester (patient or admin)
            amount: Amount in minor units; defaults to the doctor's fee

        Returns:
            Handle and client secret for completing the payment out-of-band

        Raises:
            ConflictException: If already paid, the appointment is closed, or an
                open payment for a different amount exists
            InvalidInputException: If the amount is not positive
            ExternalServiceException: If the processor fails; nothing was changed
        """
        appointment = await self.appointments.get_appointment_record(appointment_id, user)

        if appointment["payment_status"] == PaymentStatus.PAID.value:
            raise ConflictException("Payment has already been completed for this appointment")

        if appointment["status"] in (
            AppointmentStatus.CANCELLED.value,
            AppointmentStatus.COMPLETED.value,
        ):
            raise ConflictException(
                f"Cannot take payment for a {appointment['status']} appointment"
            )

        if amount is None:
            amount = await self._consultation_amount(appointment["doctor_id"])
        if amount <= 0:
            raise InvalidInputException("Payment amount must be positive")

        currency = settings.payment_currency.upper()

        if (
            appointment["payment_status"] == PaymentStatus.PENDING.value
            and appointment["payment_intent_id"]
        ):
            resumed = await self._resume_stored_intent(appointment, amount, currency)
            if resumed is not None:
                return resumed
            appointment = await self.appointments.get_appointment_record(appointment_id, user)
            if appointment["payment_status"] != PaymentStatus.FAILED.value:
                raise ConflictException("Appointment payment changed concurrently, please retry")

        expected_status = appointment["payment_status"]

        # A new attempt number only after a failed payment. While pending with no
        # stored handle the same key makes the processor return any intent it
        # already created for a lost write.
        attempts = appointment["payment_attempts"]
        if expected_status == PaymentStatus.FAILED.value:
            attempts += 1
        idempotency_key = f"appointment-{appointment_id}-attempt-{attempts}-{amount}-{currency}"

        try:
            intent = await self.gateway.create_payment_intent(
                amount=amount,
                currency=currency,
                metadata={
                    "appointment_id": str(appointment_id),
                    "patient_id": str(appointment["patient_id"]),
                    "doctor_id": str(appointment["doctor_id"]),
                },
                idempotency_key=idempotency_key,
            )
        except ExternalServiceException:
            PAYMENT_PROCESSOR_ERRORS.labels(provider=self.gateway.name, operation="create").inc()
            raise

        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.payment_status == expected_status,
            )
            .values(
                payment_intent_id=intent.id,
                payment_amount=amount,
                payment_currency=currency,
                payment_status=PaymentStatus.PENDING.value,
                payment_attempts=attempts,
                updated_at=utcnow(),
            )
            .returning(appointments.c.id)
        )
        if result.first() is None:
            await self.db.rollback()
            raise ConflictException("Appointment payment changed concurrently, please retry")
        await self.db.commit()
        PAYMENT_INTENTS_ISSUED.labels(provider=self.gateway.name).inc()

        logger.info(
            "payment_intent_issued",
            appointment_id=str(appointment_id),
            payment_intent_id=intent.id,
            amount=amount,
            currency=currency,
            attempt=attempts,
            provider=self.gateway.name,
        )

        return PaymentIntentResponse(
            appointment_id=appointment_id,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=amount,
            currency=currency,
            provider=self.gateway.name,
        )

    async def _reconcile_status(self, appointment: dict[str, Any]) -> dict[str, Any]:
        """Move a paid, still pending appointment to confirmed."""
        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment["id"],
                appointments.c.status == AppointmentStatus.PENDING.value,
                appointments.c.payment_status == PaymentStatus.PAID.value,
            )
            .values(status=AppointmentStatus.CONFIRMED.value, updated_at=utcnow())
            .returning(appointments)
        )
        row = result.mappings().first()
        return dict(row) if row else appointment

    async def _apply_success(
        self,
        appointment: dict[str, Any],
        payment_intent_id: str,
        amount: int | None,
    ) -> PaymentConfirmationResponse:
        now = utcnow()
        try:
            result = await self.db.execute(
                update(appointments)
                .where(
                    appointments.c.id == appointment["id"],
                    appointments.c.payment_intent_id == payment_intent_id,
                    appointments.c.payment_status == PaymentStatus.PENDING.value,
                )
                .values(
                    payment_status=PaymentStatus.PAID.value,
                    payment_amount=amount or appointment["payment_amount"],
                    paid_at=now,
                    updated_at=now,
                )
                .returning(appointments)
            )
            paid = result.mappings().first()

            if paid is None:
                await self.db.rollback()
                current = await self.get_by_payment_intent(payment_intent_id) or appointment
                if current["payment_status"] == PaymentStatus.FAILED.value:
                    # Failed payments are never flipped automatically; needs an operator.
                    logger.error(
                        "payment_succeeded_after_failure",
                        appointment_id=str(appointment["id"]),
                        payment_intent_id=payment_intent_id,
                        amount=amount,
                    )
                logger.info(
                    "payment_confirmation_duplicate",
                    appointment_id=str(appointment["id"]),
                    payment_intent_id=payment_intent_id,
                    payment_status=current["payment_status"],
                )
                return self._response(
                    payment_intent_id, result_for_state(current), current, duplicate=True
                )

            reconciled = await self._reconcile_status(dict(paid))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "payment_reconciliation_pending",
                appointment_id=str(appointment["id"]),
                payment_intent_id=payment_intent_id,
                error=str(e),
            )
            return self._response(
                payment_intent_id, ConfirmationResult.PAID_PENDING_RECONCILIATION, appointment
            )

        result_state = result_for_state(reconciled)
        logger.info(
            "payment_confirmed",
            appointment_id=str(reconciled["id"]),
            payment_intent_id=payment_intent_id,
            amount=reconciled["payment_amount"],
            status=reconciled["status"],
        )

        await NotificationService.notify_appointment(
            self.db,
            reconciled,
            NotificationType.APPOINTMENT_CONFIRMED
            if result_state == ConfirmationResult.CONFIRMED
            else NotificationType.PAYMENT_RECEIVED,
            self.redis,
        )

        return self._response(payment_intent_id, result_state, reconciled)

    async def _apply_failure(
        self,
        appointment: dict[str, Any],
        payment_intent_id: str,
    ) -> PaymentConfirmationResponse:
        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment["id"],
                appointments.c.payment_intent_id == payment_intent_id,
                appointments.c.payment_status == PaymentStatus.PENDING.value,
            )
            .values(payment_status=PaymentStatus.FAILED.value, updated_at=utcnow())
            .returning(appointments)
        )
        failed = result.mappings().first()

        if failed is None:
            await self.db.rollback()
            current = await self.get_by_payment_intent(payment_intent_id) or appointment
            logger.info(
                "payment_failure_ignored",
                appointment_id=str(appointment["id"]),
                payment_intent_id=payment_intent_id,
                payment_status=current["payment_status"],
            )
            return self._response(
                payment_intent_id, result_for_state(current), current, duplicate=True
            )

        failed = dict(failed)
        await self.db.commit()

        logger.info(
            "payment_failed",
            appointment_id=str(failed["id"]),
            payment_intent_id=payment_intent_id,
        )

        await NotificationService.notify_appointment(
            self.db, failed, NotificationType.PAYMENT_FAILED, self.redis
        )

        return self._response(payment_intent_id, ConfirmationResult.FAILED, failed)

    async def confirm_payment(
        self,
        payment_intent_id: str,
        outcome: PaymentOutcome,
        amount: int | None = None,
    ) -> PaymentConfirmationResponse:
        """
        Apply the processor's outcome for a transaction handle.

        Args:
            payment_intent_id: Handle previously stored by the issuer
            outcome: Success or failure as reported by the processor
            amount: Amount the processor reports as received, if known

        Returns:
            Final status; ``not_found`` when no appointment stores the handle
        """
        appointment = await self.get_by_payment_intent(payment_intent_id)
        if appointment is None:
            logger.warning(
                "payment_confirmation_unmatched",
                payment_intent_id=payment_intent_id,
                outcome=outcome.value,
            )
            return self._response(payment_intent_id, ConfirmationResult.NOT_FOUND)

        if outcome == PaymentOutcome.SUCCESS:
            return await self._apply_success(appointment, payment_intent_id, amount)
        return await self._apply_failure(appointment, payment_intent_id)

    async def apply_intent_status(self, intent: PaymentIntent) -> PaymentConfirmationResponse:
        """Apply a processor-side intent state; unsettled intents change nothing."""
        if intent.status == SUCCEEDED_INTENT_STATUS:
            return await self.confirm_payment(
                intent.id, PaymentOutcome.SUCCESS, amount=intent.amount or None
            )
        if is_failed_intent(intent):
            return await self.confirm_payment(intent.id, PaymentOutcome.FAILURE)

        appointment = await self.get_by_payment_intent(intent.id)
        if appointment is None:
            return self._response(intent.id, ConfirmationResult.NOT_FOUND)
        return self._response(intent.id, ConfirmationResult.PROCESSING, appointment)

    async def confirm_from_processor(
        self,
        payment_intent_id: str,
        user: dict,
    ) -> PaymentConfirmationResponse:
        """
        Client-initiated status query: ask the processor and apply what it says.

        Raises:
            ForbiddenException: If the matched appointment is not the user's
            ExternalServiceException: If the processor cannot be queried
        """
        appointment = await self.get_by_payment_intent(payment_intent_id)
        if appointment is None:
            logger.warning("payment_confirmation_unmatched", payment_intent_id=payment_intent_id)
            return self._response(payment_intent_id, ConfirmationResult.NOT_FOUND)

        if not is_admin(user) and str(appointment["patient_id"]) != str(user["id"]):
            raise ForbiddenException("Access denied to this payment")

        intent = await self._retrieve_intent(payment_intent_id)
        return await self.apply_intent_status(intent)

    async def handle_webhook_event(self, event: dict[str, Any]) -> WebhookAck:
        """Dispatch a verified processor event."""
        event_type = event.get("type")
        intent = (event.get("data") or {}).get("object") or {}
        payment_intent_id = intent.get("id")

        if event_type not in (SUCCEEDED_EVENT, FAILED_EVENT) or not payment_intent_id:
            logger.info("webhook_event_ignored", event_type=event_type)
            return WebhookAck(event_type=event_type)

        if event_type == SUCCEEDED_EVENT:
            amount = intent.get("amount_received") or intent.get("amount")
            response = await self.confirm_payment(
                payment_intent_id, PaymentOutcome.SUCCESS, amount=amount
            )
        else:
            response = await self.confirm_payment(payment_intent_id, PaymentOutcome.FAILURE)

        return WebhookAck(event_type=event_type, result=response.result)

    async def reconcile_pending_payments(self, limit: int = 100) -> ReconciliationReport:
        """
        Re-query the processor for every issued but unsettled payment.

        Picks up successes whose local write failed earlier as well as
        outcomes that were never delivered.
        """
        result = await self.db.execute(
            select(appointments.c.payment_intent_id)
            .where(
                appointments.c.payment_status == PaymentStatus.PENDING.value,
                appointments.c.payment_intent_id.is_not(None),
            )
            .order_by(appointments.c.updated_at)
            .limit(limit)
        )
        handles = [row.payment_intent_id for row in result]
        # Release the read transaction before calling out to the processor
        await self.db.rollback()

        report = ReconciliationReport()
        for handle in handles:
            report.checked += 1
            try:
                intent = await self._retrieve_intent(handle)
            except ExternalServiceException as e:
                report.errors += 1
                logger.warning(
                    "reconciliation_lookup_failed", payment_intent_id=handle, error=e.message
                )
                continue

            response = await self.apply_intent_status(intent)
            if response.result in (ConfirmationResult.CONFIRMED, ConfirmationResult.CANCELLED):
                report.confirmed += 1
            elif response.result == ConfirmationResult.FAILED:
                report.failed += 1
            elif response.result == ConfirmationResult.PAID_PENDING_RECONCILIATION:
                report.errors += 1
            else:
                report.still_processing += 1

        logger.info("payment_reconciliation_completed", **report.model_dump())
        return report

    async def get_payment_details(
        self,
        appointment_id: UUID,
        user: dict,
    ) -> PaymentDetailsResponse:
        """Payment view of one appointment, used by clients to poll status."""
        appointment = await self.appointments.get_appointment_record(appointment_id, user)
        doctor = await self.doctors.get_doctor_by_id(self.db, appointment["doctor_id"]) or {}

        amount = appointment["payment_amount"]
        if amount is None:
            amount = doctor.get("consultation_fee") or settings.default_consultation_fee

        return PaymentDetailsResponse(
            appointment_id=appointment["id"],
            amount=amount,
            currency=appointment["payment_currency"] or settings.payment_currency.upper(),
            payment_status=appointment["payment_status"],
            status=appointment["status"],
            payment_intent_id=appointment["payment_intent_id"],
            paid_at=appointment["paid_at"],
            doctor={
                "id": str(appointment["doctor_id"]),
                "name": doctor.get("name"),
                "specialty": doctor.get("specialty"),
            },
            appointment_at=appointment["appointment_at"],
        )

    async def list_payments(
        self,
        payment_status: PaymentStatus | None = None,
        limit: int = 100,
    ) -> list[PaymentRecord]:
        """Admin listing of appointment payments, newest first."""
        stmt = select(appointments).order_by(appointments.c.updated_at.desc()).limit(limit)
        if payment_status:
            stmt = stmt.where(appointments.c.payment_status == payment_status.value)

        result = await self.db.execute(stmt)
        return [
            PaymentRecord(
                appointment_id=row["id"],
                patient_id=row["patient_id"],
                doctor_id=row["doctor_id"],
                amount=row["payment_amount"],
                currency=row["payment_currency"],
                payment_status=row["payment_status"],
                status=row["status"],
                payment_intent_id=row["payment_intent_id"],
                paid_at=row["paid_at"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in result.mappings()
        ]
