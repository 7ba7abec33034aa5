"""Notification service: stores in-app notifications and publishes them to Redis."""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

import redis
import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.core.redis_client import notification_channel
from app.core.timeutils import utcnow
from app.models.notifications import notifications
from app.schemas.notifications import NotificationType

logger = structlog.get_logger(__name__)

# (title, body template) per notification type
_APPOINTMENT_MESSAGES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.APPOINTMENT_CREATED: (
        "Appointment Requested",
        "Your appointment on {when} is booked and awaiting payment.",
    ),
    NotificationType.PAYMENT_RECEIVED: (
        "Payment Received",
        "We received your payment for the appointment on {when}.",
    ),
    NotificationType.PAYMENT_FAILED: (
        "Payment Not Completed",
        "Payment for the appointment on {when} was not completed, please retry.",
    ),
    NotificationType.APPOINTMENT_CONFIRMED: (
        "Appointment Confirmed",
        "Your appointment on {when} is confirmed.",
    ),
    NotificationType.APPOINTMENT_CANCELLED: (
        "Appointment Cancelled",
        "Your appointment on {when} has been cancelled.",
    ),
    NotificationType.APPOINTMENT_COMPLETED: (
        "Appointment Completed",
        "Your appointment on {when} has been marked as completed.",
    ),
}


class NotificationService:
    """Service for appointment and payment notifications."""

    @staticmethod
    def publish(
        redis_client: redis.Redis | None,
        user_id: UUID,
        payload: dict[str, Any],
    ) -> bool:
        """
        Publish a notification on the user's pub/sub channel.

        Returns:
            True if published; delivery problems are logged, never raised
        """
        if redis_client is None:
            return False

        try:
            redis_client.publish(
                notification_channel(user_id),
                json.dumps({"type": "notification", "data": payload}, default=str),
            )
            return True
        except Exception as e:
            logger.warning("notification_publish_failed", user_id=str(user_id), error=str(e))
            return False

    @staticmethod
    async def send_to_user(
        db: AsyncSession,
        user_id: UUID,
        title: str,
        body: str,
        notification_type: NotificationType,
        data: dict[str, Any] | None = None,
        redis_client: redis.Redis | None = None,
    ) -> dict[str, Any]:
        """
        Record a notification for a user and push it to connected clients.

        Args:
            db: Database session
            user_id: Recipient user ID
            title: Notification title
            body: Notification body
            notification_type: Kind of notification
            data: Optional structured payload
            redis_client: Redis client used for the push channel

        Returns:
            Stored notification record
        """
        result = await db.execute(
            notifications.insert()
            .values(
                user_id=user_id,
                title=title,
                body=body,
                notification_type=notification_type.value,
                data=data,
            )
            .returning(notifications)
        )
        record = dict(result.mappings().one())
        await db.commit()

        NotificationService.publish(redis_client, user_id, record)
        logger.info(
            "notification_recorded",
            user_id=str(user_id),
            notification_type=notification_type.value,
        )
        return record

    @staticmethod
    async def notify_appointment(
        db: AsyncSession,
        appointment: dict[str, Any],
        notification_type: NotificationType,
        redis_client: redis.Redis | None = None,
    ) -> dict[str, Any] | None:
        """
        Notify the appointment's patient about a lifecycle or payment change.

        Failures are logged and swallowed: a notification problem must never
        undo or fail the state change that triggered it.
        """
        title, template = _APPOINTMENT_MESSAGES[notification_type]
        when = appointment.get("appointment_at")
        when_str = when.strftime("%b %d, %I:%M %p") if isinstance(when, datetime) else str(when)

        try:
            return await NotificationService.send_to_user(
                db=db,
                user_id=appointment["patient_id"],
                title=title,
                body=template.format(when=when_str),
                notification_type=notification_type,
                data={
                    "appointment_id": str(appointment["id"]),
                    "status": appointment.get("status"),
                    "payment_status": appointment.get("payment_status"),
                },
                redis_client=redis_client,
            )
        except Exception as e:
            await db.rollback()
            logger.warning(
                "failed_to_send_appointment_notification",
                appointment_id=str(appointment.get("id")),
                notification_type=notification_type.value,
                error=str(e),
            )
            return None

    @staticmethod
    async def list_notifications(
        db: AsyncSession,
        user_id: UUID,
        unread_only: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        """List a user's notifications, newest first."""
        conditions = [notifications.c.user_id == user_id]
        if unread_only:
            conditions.append(notifications.c.read_at.is_(None))

        total = (
            await db.execute(select(func.count()).select_from(notifications).where(*conditions))
        ).scalar() or 0
        unread = (
            await db.execute(
                select(func.count())
                .select_from(notifications)
                .where(notifications.c.user_id == user_id, notifications.c.read_at.is_(None))
            )
        ).scalar() or 0

        result = await db.execute(
            select(notifications)
            .where(*conditions)
            .order_by(notifications.c.created_at.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )

        return {
            "total": total,
            "unread": unread,
            "page": page,
            "page_size": page_size,
            "items": [dict(row) for row in result.mappings().all()],
        }

    @staticmethod
    async def mark_as_read(
        db: AsyncSession,
        notification_id: UUID,
        user_id: UUID,
    ) -> dict[str, Any]:
        """
        Mark one of the user's notifications as read.

        Raises:
            NotFoundException: If the notification does not belong to the user
        """
        result = await db.execute(
            select(notifications).where(
                notifications.c.id == notification_id,
                notifications.c.user_id == user_id,
            )
        )
        record = result.mappings().first()
        if not record:
            raise NotFoundException("Notification not found")

        if record["read_at"] is not None:
            return dict(record)

        result = await db.execute(
            update(notifications)
            .where(notifications.c.id == notification_id)
            .values(read_at=utcnow())
            .returning(notifications)
        )
        updated = dict(result.mappings().one())
        await db.commit()
        return updated
