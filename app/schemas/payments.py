"""Payment schemas."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.appointments import AppointmentResponse, AppointmentStatus, PaymentStatus


class PaymentOutcome(str, Enum):
    """Outcome reported by the payment processor for a transaction handle."""

    SUCCESS = "success"
    FAILURE = "failure"


class ConfirmationResult(str, Enum):
    """Final status emitted after processing a payment confirmation."""

    CONFIRMED = "confirmed"
    PAID_PENDING_RECONCILIATION = "paid_pending_reconciliation"
    FAILED = "failed"
    NOT_FOUND = "not_found"
    PROCESSING = "processing"
    CANCELLED = "cancelled"


class PaymentIntent(BaseModel):
    """Transaction handle returned by a payment gateway."""

    id: str
    client_secret: str | None = None
    amount: int
    currency: str
    status: str
    last_payment_error: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class PaymentIntentCreate(BaseModel):
    """Request to issue a payment intent for an appointment."""

    appointment_id: UUID
    amount: int | None = Field(
        None,
        description="Amount in minor currency units; defaults to the doctor's consultation fee",
    )


class PaymentIntentResponse(BaseModel):
    """Issued payment intent handed back to the client."""

    appointment_id: UUID
    payment_intent_id: str
    client_secret: str | None
    amount: int
    currency: str
    provider: str


class PaymentConfirmRequest(BaseModel):
    """Client-initiated status query for a transaction handle."""

    payment_intent_id: str = Field(..., min_length=1)


class PaymentConfirmationResponse(BaseModel):
    """Result of applying a processor outcome to the local appointment."""

    result: ConfirmationResult
    payment_intent_id: str
    message: str
    duplicate: bool = False
    appointment: AppointmentResponse | None = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the processor."""

    received: bool = True
    event_type: str | None = None
    result: ConfirmationResult | None = None


class PaymentDetailsResponse(BaseModel):
    """Payment view of a single appointment (used for status polling)."""

    appointment_id: UUID
    amount: int
    currency: str
    payment_status: PaymentStatus
    status: AppointmentStatus
    payment_intent_id: str | None = None
    paid_at: datetime | None = None
    doctor: dict[str, Any]
    appointment_at: datetime


class PaymentRecord(BaseModel):
    """Admin payment listing entry."""

    appointment_id: UUID
    patient_id: UUID
    doctor_id: UUID
    amount: int | None
    currency: str | None
    payment_status: PaymentStatus
    status: AppointmentStatus
    payment_intent_id: str | None
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ReconciliationReport(BaseModel):
    """Summary of a reconciliation sweep."""

    checked: int = 0
    confirmed: int = 0
    failed: int = 0
    still_processing: int = 0
    errors: int = 0
