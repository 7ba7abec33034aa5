"""Database models."""

from app.models.appointments import appointments
from app.models.doctors import doctors
from app.models.metadata import metadata
from app.models.notifications import notifications
from app.models.users import users

__all__ = [
    "appointments",
    "doctors",
    "metadata",
    "notifications",
    "users",
]
