"""Notification endpoints (pull side of appointment and payment notifications)."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import CurrentUser, DatabaseSession
from app.schemas.notifications import NotificationListResponse, NotificationRecord
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get(
    "/",
    response_model=NotificationListResponse,
    status_code=status.HTTP_200_OK,
    summary="List my notifications",
)
async def list_notifications(
    current_user: CurrentUser,
    db: DatabaseSession,
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> NotificationListResponse:
    """
    Notification history for the authenticated user, newest first.

    Args:
        current_user: Authenticated user
        db: Database session
        unread_only: Only return notifications not yet read
        page: Page number
        page_size: Items per page

    Returns:
        Paginated notifications with the unread count
    """
    result = await NotificationService.list_notifications(
        db,
        current_user["id"],
        unread_only=unread_only,
        page=page,
        page_size=page_size,
    )
    return NotificationListResponse.model_validate(result)


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationRecord,
    status_code=status.HTTP_200_OK,
    summary="Mark notification as read",
)
async def mark_notification_read(
    notification_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> NotificationRecord:
    """Mark one of my notifications as read."""
    record = await NotificationService.mark_as_read(db, notification_id, current_user["id"])
    return NotificationRecord.model_validate(record)
