"""User model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Table,
    Text,
    Uuid,
    text,
)

from app.core.timeutils import utcnow
from app.models.metadata import metadata

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Identity (mirrored from the authentication provider)
    Column("username", Text, nullable=False, unique=True, index=True),
    Column("email", Text, nullable=False, index=True),
    Column("full_name", Text),
    Column("role", Text, nullable=False, server_default=text("'patient'")),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
)
