"""Doctor directory endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ConflictException, NotFoundException
from app.dependencies import Cache, CurrentAdmin, DatabaseSession
from app.schemas.doctors import DoctorCreate, DoctorListResponse, DoctorResponse
from app.services.doctor_service import DoctorService

router = APIRouter(prefix="/doctors", tags=["Doctors"])


@router.post("/", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
async def create_doctor(
    doctor_data: DoctorCreate,
    _admin: CurrentAdmin,
    db: DatabaseSession,
    cache: Cache,
):
    """
    Add a doctor to the directory (admin only).

    - **consultation_fee**: fee in minor currency units, used as the default payment amount
    """
    try:
        return await DoctorService(cache_manager=cache).create_doctor(db, doctor_data)
    except IntegrityError as e:
        await db.rollback()
        raise ConflictException(
            f"Doctor with email '{doctor_data.email}' already exists"
        ) from e


@router.get("/", response_model=DoctorListResponse)
async def list_doctors(
    db: DatabaseSession,
    cache: Cache,
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Number of records to return"),
    specialty: str | None = Query(None, description="Filter by specialty"),
):
    """List doctors, most experienced first."""
    return await DoctorService(cache_manager=cache).get_doctors(
        db, skip=skip, limit=limit, specialty=specialty
    )


@router.get("/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(doctor_id: UUID, db: DatabaseSession, cache: Cache):
    """Get a doctor by ID."""
    doctor = await DoctorService(cache_manager=cache).get_doctor_by_id(db, doctor_id)
    if not doctor:
        raise NotFoundException("Doctor not found")
    return doctor
