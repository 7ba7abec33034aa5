"""In-app notification records."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
)

from app.core.timeutils import utcnow
from app.models.metadata import metadata

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("title", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("notification_type", String(50), nullable=False),
    Column("data", JSON, nullable=True),
    Column("read_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    CheckConstraint(
        "notification_type IN ('appointment_created', 'payment_received', 'payment_failed', "
        "'appointment_confirmed', 'appointment_cancelled', 'appointment_completed')",
        name="notifications_type_check",
    ),
    Index("idx_notifications_user_created", "user_id", "created_at"),
)
