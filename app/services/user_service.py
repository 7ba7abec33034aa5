"""User service for business logic."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.users import users


class UserService:
    """Lookups over users mirrored from the authentication provider."""

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: UUID) -> dict | None:
        """Get user by internal ID."""
        result = await db.execute(select(users).where(users.c.id == user_id))
        user = result.mappings().first()
        return dict(user) if user else None

    @staticmethod
    async def get_user_by_username(db: AsyncSession, username: str) -> dict | None:
        """Get user by username."""
        result = await db.execute(select(users).where(users.c.username == username))
        user = result.mappings().first()
        return dict(user) if user else None

    @staticmethod
    async def create_user(
        db: AsyncSession,
        username: str,
        email: str,
        full_name: str | None = None,
        role: str = "patient",
    ) -> dict:
        """Create a user record."""
        result = await db.execute(
            users.insert()
            .values(username=username, email=email, full_name=full_name, role=role)
            .returning(users)
        )
        user = result.mappings().first()

        if not user:
            raise ValueError("Failed to create user")

        await db.commit()
        return dict(user)
