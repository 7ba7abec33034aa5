"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import Cache, CurrentUser, DatabaseSession, RedisClient
from app.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    PaymentStatus,
)
from app.services.appointment_service import AppointmentService

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    db: DatabaseSession,
    redis_client: RedisClient,
    cache: Cache,
) -> AppointmentResponse:
    """
    Book an appointment for the authenticated user.

    The appointment starts as ``pending`` with payment ``pending``.

    Args:
        data: Doctor, time, symptoms and optional notes
        current_user: Authenticated user
        db: Database session
        redis_client: Redis client for notifications
        cache: Doctor cache

    Returns:
        Created appointment
    """
    service = AppointmentService(db, redis_client, cache)
    return await service.create_appointment(current_user["id"], data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List my appointments",
)
async def list_appointments(
    current_user: CurrentUser,
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    payment_status: PaymentStatus | None = Query(None),
    doctor_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """List the authenticated user's appointments with filtering."""
    filters = AppointmentFilters(
        status=status_filter,
        payment_status=payment_status,
        doctor_id=doctor_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db)
    return await service.list_appointments(filters, patient_id=current_user["id"])


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: If appointment not found
        ForbiddenException: If it belongs to someone else
    """
    service = AppointmentService(db)
    return await service.get_appointment(appointment_id, current_user)


@router.patch(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    db: DatabaseSession,
    redis_client: RedisClient,
    data: AppointmentCancel | None = None,
) -> AppointmentResponse:
    """Cancel a pending or confirmed appointment."""
    service = AppointmentService(db, redis_client)
    return await service.cancel_appointment(
        appointment_id, current_user, reason=data.reason if data else None
    )
