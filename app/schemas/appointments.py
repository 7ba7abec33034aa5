"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.core.timeutils import as_utc


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Appointment payment status."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    doctor_id: UUID
    appointment_at: datetime
    symptoms: str = Field(..., max_length=2000)
    notes: str | None = Field(None, max_length=1000)

    @field_validator("appointment_at")
    @classmethod
    def normalize_appointment_at(cls, v: datetime) -> datetime:
        """Store every appointment time in UTC."""
        return as_utc(v)

    @field_validator("symptoms")
    @classmethod
    def strip_symptoms(cls, v: str) -> str:
        """Whitespace-only symptom descriptions count as empty."""
        return v.strip()


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=1000)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_at: datetime
    symptoms: str
    notes: str | None = None
    status: AppointmentStatus
    payment_status: PaymentStatus
    payment_intent_id: str | None = None
    payment_amount: int | None = None
    payment_currency: str | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    payment_status: PaymentStatus | None = None
    doctor_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
