"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

import redis
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenException, UnauthorizedException
from app.core.payment_gateway import PaymentGateway, get_payment_gateway
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import decode_access_token
from app.database import get_db
from app.services.user_service import UserService

# Missing credentials are reported as 401 by get_current_user_id
security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        UnauthorizedException: If token is missing, invalid or expired
    """
    if credentials is None:
        raise UnauthorizedException("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise UnauthorizedException("Could not validate credentials")

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise UnauthorizedException("Could not validate credentials")

    try:
        return UUID(user_id_str)
    except ValueError:
        raise UnauthorizedException("Invalid user ID format")


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get current user from database.

    Raises:
        UnauthorizedException: If user not found
        ForbiddenException: If user is inactive
    """
    user = await UserService.get_user_by_id(db, user_id)

    if not user:
        raise UnauthorizedException("User not found")

    if not user["is_active"]:
        raise ForbiddenException("User account is deactivated")

    return user


async def get_current_admin(
    user: Annotated[dict, Depends(get_current_user)],
) -> dict:
    """Require the current user to hold the admin role."""
    if user["role"] != "admin":
        raise ForbiddenException("Admin privileges required")
    return user


def get_cache_manager(
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> CacheManager:
    """Get cache manager bound to the shared Redis client."""
    return CacheManager(redis_client)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
CurrentUser = Annotated[dict, Depends(get_current_user)]
CurrentAdmin = Annotated[dict, Depends(get_current_admin)]
RedisClient = Annotated[redis.Redis, Depends(get_redis_client)]
Cache = Annotated[CacheManager, Depends(get_cache_manager)]
Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]
