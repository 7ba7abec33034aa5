"""In-app notification schemas."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class NotificationType(str, Enum):
    """Kinds of appointment and payment notifications."""

    APPOINTMENT_CREATED = "appointment_created"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_COMPLETED = "appointment_completed"


class NotificationRecord(BaseModel):
    """Stored notification."""

    id: UUID
    user_id: UUID
    title: str
    body: str
    notification_type: NotificationType
    data: dict[str, Any] | None = None
    read_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    """Paginated notification history."""

    total: int
    unread: int
    page: int
    page_size: int
    items: list[NotificationRecord]
