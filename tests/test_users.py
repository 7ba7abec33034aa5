"""Tests for user identity resolution."""

from datetime import timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from app.core.security import create_access_token, decode_access_token
from app.models.users import users


@pytest.mark.asyncio
async def test_get_me(client: AsyncClient, auth_headers: dict, test_user: dict):
    """The bearer token resolves to the stored user."""
    response = await client.get("/api/v1/users/me", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(test_user["id"])
    assert data["username"] == "patient"
    assert data["role"] == "patient"


@pytest.mark.asyncio
async def test_unknown_user_token(client: AsyncClient):
    """A valid token for a user that does not exist is rejected."""
    token = create_access_token({"sub": str(uuid4())})
    response = await client.get(
        "/api/v1/users/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_expired_token(client: AsyncClient, test_user: dict):
    """Expired tokens are rejected."""
    token = create_access_token(
        {"sub": str(test_user["id"])}, expires_delta=timedelta(minutes=-1)
    )
    response = await client.get(
        "/api/v1/users/me", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_inactive_user(
    client: AsyncClient,
    auth_headers: dict,
    test_user: dict,
    db_session,
):
    """Deactivated accounts are refused."""
    await db_session.execute(
        update(users).where(users.c.id == test_user["id"]).values(is_active=False)
    )
    await db_session.commit()

    response = await client.get("/api/v1/users/me", headers=auth_headers)
    assert response.status_code == 403


def test_decode_access_token():
    """Tokens round-trip; anything unverifiable decodes to None."""
    token = create_access_token({"sub": "x"})
    assert decode_access_token(token)["sub"] == "x"
    assert decode_access_token("garbage") is None
