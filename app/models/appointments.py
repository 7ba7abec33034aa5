"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from app.core.timeutils import utcnow
from app.models.metadata import metadata

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column(
        "patient_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    ),
    # Appointment details
    Column("appointment_at", DateTime(timezone=True), nullable=False),
    Column("symptoms", Text, nullable=False),
    Column("notes", Text, nullable=True),
    # Lifecycle
    Column("status", String(20), nullable=False, server_default=text("'pending'")),
    # Payment
    Column("payment_status", String(20), nullable=False, server_default=text("'pending'")),
    Column("payment_intent_id", Text, nullable=True, unique=True),
    Column("payment_amount", Integer, nullable=True),
    Column("payment_currency", String(3), nullable=True),
    Column("payment_attempts", Integer, nullable=False, server_default=text("0")),
    Column("paid_at", DateTime(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'completed', 'cancelled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "payment_status IN ('pending', 'paid', 'failed')",
        name="appointments_payment_status_check",
    ),
    CheckConstraint(
        "status <> 'confirmed' OR payment_status = 'paid'",
        name="appointments_confirmed_requires_payment",
    ),
    Index("idx_appointments_doctor_slot", "doctor_id", "appointment_at"),
)
