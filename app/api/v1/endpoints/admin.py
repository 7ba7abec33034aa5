"""Admin-only endpoints for appointment and payment management."""

from uuid import UUID

from fastapi import APIRouter, Query, status
from sqlalchemy import func, select

from app.dependencies import Cache, CurrentAdmin, DatabaseSession, Gateway, RedisClient
from app.models.appointments import appointments
from app.models.doctors import doctors
from app.models.users import users
from app.schemas.admin import AdminStatsResponse
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    PaymentStatus,
)
from app.schemas.payments import PaymentRecord, ReconciliationReport
from app.services.appointment_service import AppointmentService
from app.services.payment_service import PaymentService

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get(
    "/appointments",
    response_model=AppointmentListResponse,
    summary="List all appointments (admin only)",
)
async def list_all_appointments(
    _admin: CurrentAdmin,
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    payment_status: PaymentStatus | None = Query(None),
    doctor_id: UUID | None = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
) -> AppointmentListResponse:
    """
    Get paginated list of all appointments.

    Requires admin role.
    """
    filters = AppointmentFilters(
        status=status_filter,
        payment_status=payment_status,
        doctor_id=doctor_id,
        page=page,
        page_size=page_size,
    )
    return await AppointmentService(db).list_appointments(filters)


@router.get(
    "/stats",
    response_model=AdminStatsResponse,
    summary="Get dashboard statistics (admin only)",
)
async def get_admin_stats(
    _admin: CurrentAdmin,
    db: DatabaseSession,
) -> AdminStatsResponse:
    """
    Directory and booking totals for the admin dashboard.

    Appointment counts are broken down by lifecycle status and by payment
    status; statuses with no appointments are reported as zero.
    """
    total_doctors = (await db.execute(select(func.count()).select_from(doctors))).scalar_one()
    total_patients = (
        await db.execute(select(func.count()).select_from(users).where(users.c.role == "patient"))
    ).scalar_one()

    appointment_stats = {item.value: 0 for item in AppointmentStatus}
    status_result = await db.execute(
        select(appointments.c.status, func.count()).group_by(appointments.c.status)
    )
    for status_value, count in status_result.all():
        appointment_stats[status_value] = count

    payment_stats = {item.value: 0 for item in PaymentStatus}
    payment_result = await db.execute(
        select(appointments.c.payment_status, func.count()).group_by(
            appointments.c.payment_status
        )
    )
    for payment_value, count in payment_result.all():
        payment_stats[payment_value] = count

    paid_amount_result = await db.execute(
        select(func.coalesce(func.sum(appointments.c.payment_amount), 0)).where(
            appointments.c.payment_status == PaymentStatus.PAID.value
        )
    )

    recent_result = await db.execute(
        select(appointments).order_by(appointments.c.created_at.desc()).limit(5)
    )

    return AdminStatsResponse(
        total_doctors=total_doctors,
        total_patients=total_patients,
        total_appointments=sum(appointment_stats.values()),
        appointment_stats=appointment_stats,
        payment_stats=payment_stats,
        paid_amount=paid_amount_result.scalar_one(),
        recent_appointments=[
            AppointmentResponse.model_validate(dict(row)) for row in recent_result.mappings()
        ],
    )


@router.patch(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    summary="Cancel an appointment (admin only)",
)
async def cancel_appointment(
    appointment_id: UUID,
    admin_user: CurrentAdmin,
    db: DatabaseSession,
    redis_client: RedisClient,
) -> AppointmentResponse:
    """Cancel a pending or confirmed appointment."""
    return await AppointmentService(db, redis_client).cancel_appointment(
        appointment_id, admin_user
    )


@router.patch(
    "/appointments/{appointment_id}/complete",
    response_model=AppointmentResponse,
    summary="Mark appointment as completed (admin only)",
)
async def complete_appointment(
    appointment_id: UUID,
    _admin: CurrentAdmin,
    db: DatabaseSession,
    redis_client: RedisClient,
) -> AppointmentResponse:
    """Only confirmed (paid) appointments can be completed."""
    return await AppointmentService(db, redis_client).complete_appointment(appointment_id)


@router.get(
    "/payments",
    response_model=list[PaymentRecord],
    summary="List appointment payments (admin only)",
)
async def list_payments(
    _admin: CurrentAdmin,
    db: DatabaseSession,
    gateway: Gateway,
    payment_status: PaymentStatus | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
) -> list[PaymentRecord]:
    """Payment view over appointments, most recently updated first."""
    return await PaymentService(db, gateway).list_payments(payment_status, limit)


@router.post(
    "/payments/reconcile",
    response_model=ReconciliationReport,
    status_code=status.HTTP_200_OK,
    summary="Reconcile unsettled payments with the processor (admin only)",
)
async def reconcile_payments(
    _admin: CurrentAdmin,
    db: DatabaseSession,
    gateway: Gateway,
    redis_client: RedisClient,
    cache: Cache,
    limit: int = Query(100, ge=1, le=1000),
) -> ReconciliationReport:
    """
    Re-query the processor for issued but unsettled payments and apply outcomes.

    Picks up successful payments whose local confirmation could not be
    written, and outcomes whose webhook never arrived.
    """
    service = PaymentService(db, gateway, redis_client, cache)
    return await service.reconcile_pending_payments(limit=limit)
