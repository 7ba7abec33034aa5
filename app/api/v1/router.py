"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1.endpoints import (
    admin,
    appointments,
    doctors,
    health,
    notifications,
    payments,
    users,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(users.router)
api_router.include_router(doctors.router)
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(payments.router)
api_router.include_router(notifications.router)
api_router.include_router(admin.router)
