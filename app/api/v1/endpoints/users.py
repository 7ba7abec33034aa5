"""User endpoints."""

from fastapi import APIRouter

from app.dependencies import CurrentUser
from app.schemas.users import UserResponse

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(current_user: CurrentUser) -> UserResponse:
    """Get the authenticated user's profile."""
    return UserResponse.model_validate(current_user)
