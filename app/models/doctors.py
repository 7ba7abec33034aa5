"""Doctor model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)

from app.core.timeutils import utcnow
from app.models.metadata import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("specialty", String(200), nullable=False, index=True),
    Column("location", Text, nullable=False),
    Column("phone", String(20), nullable=False),
    Column("email", Text, nullable=False, unique=True),
    Column("bio", Text, nullable=False),
    Column("image_url", Text),
    # Minor currency units (2990 == 29.90)
    Column("consultation_fee", Integer, nullable=False),
    Column("years_of_experience", Integer, nullable=False),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
)
