"""Appointment service for business logic."""

from datetime import timedelta
from typing import Any
from uuid import UUID

import redis
import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidInputException,
    NotFoundException,
)
from app.core.redis_client import CacheManager
from app.core.timeutils import utcnow
from app.models.appointments import appointments
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentStatus,
    PaymentStatus,
)
from app.schemas.notifications import NotificationType
from app.services.doctor_service import DoctorService
from app.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)

# Appointments holding a doctor's time slot
ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)


def is_admin(user: dict) -> bool:
    """Check whether a user dict carries the admin role."""
    return user.get("role") == "admin"


class AppointmentService:
    """Service for booking and managing appointments."""

    def __init__(
        self,
        db: AsyncSession,
        redis_client: redis.Redis | None = None,
        cache_manager: CacheManager | None = None,
    ):
        """Initialize service with database session and optional Redis collaborators."""
        self.db = db
        self.redis = redis_client
        self.doctors = DoctorService(cache_manager=cache_manager)

    async def _fetch(self, appointment_id: UUID) -> dict[str, Any]:
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        if not row:
            raise NotFoundException("Appointment not found")
        return dict(row)

    async def get_appointment_record(self, appointment_id: UUID, user: dict) -> dict[str, Any]:
        """
        Load an appointment the user may act on.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If the user is neither the patient nor an admin
        """
        appointment = await self._fetch(appointment_id)

        if not is_admin(user) and str(appointment["patient_id"]) != str(user["id"]):
            raise ForbiddenException("Access denied to this appointment")

        return appointment

    def _validate_schedule(self, data: AppointmentCreate) -> None:
        if not data.symptoms:
            raise InvalidInputException("Please describe your symptoms")

        now = utcnow()
        if data.appointment_at <= now:
            raise InvalidInputException("Appointment time must be in the future")

        if data.appointment_at > now + timedelta(days=settings.booking_window_days):
            raise InvalidInputException(
                f"Appointments can be booked at most {settings.booking_window_days} days ahead"
            )

    async def create_appointment(
        self,
        patient_id: UUID,
        data: AppointmentCreate,
    ) -> AppointmentResponse:
        """
        Book a new appointment in the (pending, pending) state.

        Args:
            patient_id: ID of the authenticated requester
            data: Appointment creation data

        Returns:
            Created appointment

        Raises:
            NotFoundException: If the doctor does not exist
            InvalidInputException: If the time is not bookable or symptoms are empty
            ConflictException: If the doctor's slot is already taken
        """
        doctor = await self.doctors.get_doctor_by_id(self.db, data.doctor_id)
        if not doctor:
            raise NotFoundException("Doctor not found")

        self._validate_schedule(data)

        conflict = await self.db.execute(
            select(appointments.c.id).where(
                and_(
                    appointments.c.doctor_id == data.doctor_id,
                    appointments.c.appointment_at == data.appointment_at,
                    appointments.c.status.in_(ACTIVE_STATUSES),
                )
            )
        )
        if conflict.first():
            raise ConflictException("This time slot is already booked. Please select another time.")

        values = {
            "patient_id": patient_id,
            "doctor_id": data.doctor_id,
            "appointment_at": data.appointment_at,
            "symptoms": data.symptoms,
            "notes": data.notes,
            "status": AppointmentStatus.PENDING.value,
            "payment_status": PaymentStatus.PENDING.value,
        }

        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self.db.execute(stmt)
        row = dict(result.mappings().one())
        await self.db.commit()

        logger.info(
            "appointment_created",
            appointment_id=str(row["id"]),
            patient_id=str(patient_id),
            doctor_id=str(data.doctor_id),
        )

        await NotificationService.notify_appointment(
            self.db, row, NotificationType.APPOINTMENT_CREATED, self.redis
        )

        return AppointmentResponse.model_validate(row)

    async def get_appointment(self, appointment_id: UUID, user: dict) -> AppointmentResponse:
        """Get appointment by ID for its patient or an admin."""
        appointment = await self.get_appointment_record(appointment_id, user)
        return AppointmentResponse.model_validate(appointment)

    async def list_appointments(
        self,
        filters: AppointmentFilters,
        patient_id: UUID | None = None,
    ) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters
            patient_id: Restrict to one patient; ``None`` lists everyone's (admin)

        Returns:
            Paginated list of appointments
        """
        conditions = []

        if patient_id is not None:
            conditions.append(appointments.c.patient_id == patient_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.payment_status:
            conditions.append(appointments.c.payment_status == filters.payment_status.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.from_date:
            conditions.append(appointments.c.appointment_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_at <= filters.to_date)

        count_stmt = select(func.count()).select_from(appointments).where(*conditions)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(*conditions)
            .order_by(appointments.c.appointment_at.desc())
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        items = [AppointmentResponse.model_validate(dict(row)) for row in result.mappings()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        user: dict,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Cancel a pending or confirmed appointment.

        Raises:
            ConflictException: If the appointment is already cancelled or completed
        """
        appointment = await self.get_appointment_record(appointment_id, user)

        if appointment["status"] == AppointmentStatus.CANCELLED.value:
            raise ConflictException("This appointment is already cancelled")
        if appointment["status"] == AppointmentStatus.COMPLETED.value:
            raise ConflictException("Cannot cancel a completed appointment")

        now = utcnow()
        values: dict[str, Any] = {
            "status": AppointmentStatus.CANCELLED.value,
            "cancelled_at": now,
            "updated_at": now,
        }
        if reason:
            values["notes"] = (
                f"{appointment['notes']}\nCancelled: {reason}"
                if appointment["notes"]
                else f"Cancelled: {reason}"
            )

        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.status.in_(ACTIVE_STATUSES),
            )
            .values(**values)
            .returning(appointments)
        )
        row = result.mappings().first()
        if row is None:
            await self.db.rollback()
            raise ConflictException("Appointment status changed, please reload and retry")

        row = dict(row)
        await self.db.commit()

        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            by=str(user["id"]),
            payment_status=row["payment_status"],
        )

        await NotificationService.notify_appointment(
            self.db, row, NotificationType.APPOINTMENT_CANCELLED, self.redis
        )

        return AppointmentResponse.model_validate(row)

    async def complete_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Mark a confirmed appointment as completed (administrative action).

        Raises:
            NotFoundException: If appointment not found
            ConflictException: If the appointment is not confirmed
        """
        await self._fetch(appointment_id)

        now = utcnow()
        result = await self.db.execute(
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.status == AppointmentStatus.CONFIRMED.value,
            )
            .values(
                status=AppointmentStatus.COMPLETED.value,
                completed_at=now,
                updated_at=now,
            )
            .returning(appointments)
        )
        row = result.mappings().first()
        if row is None:
            await self.db.rollback()
            raise ConflictException("Only confirmed appointments can be marked as completed")

        row = dict(row)
        await self.db.commit()

        logger.info("appointment_completed", appointment_id=str(appointment_id))

        await NotificationService.notify_appointment(
            self.db, row, NotificationType.APPOINTMENT_COMPLETED, self.redis
        )

        return AppointmentResponse.model_validate(row)
