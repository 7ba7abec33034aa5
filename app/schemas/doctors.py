"""Doctor directory schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class DoctorBase(BaseModel):
    """Base doctor schema."""

    name: str = Field(..., min_length=1, max_length=200)
    specialty: str = Field(..., min_length=1, max_length=200)
    location: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=7, max_length=20)
    email: EmailStr
    bio: str = Field(..., min_length=1)
    image_url: str | None = None
    consultation_fee: int = Field(..., gt=0, description="Fee in minor currency units")
    years_of_experience: int = Field(..., ge=0, le=80)


class DoctorCreate(DoctorBase):
    """Schema for creating a doctor."""


class DoctorResponse(DoctorBase):
    """Schema for doctor response."""

    id: UUID
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DoctorListResponse(BaseModel):
    """Paginated doctor listing."""

    total: int
    skip: int
    limit: int
    items: list[DoctorResponse]
