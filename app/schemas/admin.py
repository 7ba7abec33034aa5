"""Admin-specific schemas."""

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.appointments import AppointmentResponse


class AdminStatsResponse(BaseModel):
    """Response schema for the admin dashboard statistics."""

    total_doctors: int
    total_patients: int
    total_appointments: int
    appointment_stats: dict[str, int] = Field(
        ...,
        description="Appointment counts by lifecycle status",
        examples=[{"pending": 12, "confirmed": 30, "completed": 210, "cancelled": 8}],
    )
    payment_stats: dict[str, int] = Field(
        ...,
        description="Appointment counts by payment status",
        examples=[{"pending": 12, "paid": 240, "failed": 3}],
    )
    paid_amount: int = Field(..., description="Sum of paid amounts in minor units")
    recent_appointments: list[AppointmentResponse]

    model_config = ConfigDict(from_attributes=True)
