"""Tests for appointment and payment notifications."""

import json
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from httpx import AsyncClient

from app.schemas.notifications import NotificationType
from app.services.notification_service import NotificationService


@pytest.mark.asyncio
async def test_list_notifications(
    client: AsyncClient,
    auth_headers: dict,
    other_headers: dict,
    appointment: dict,
) -> None:
    """Booking leaves a notification in the patient's history only."""
    response = await client.get("/api/v1/notifications/", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["unread"] == 1
    item = data["items"][0]
    assert item["notification_type"] == "appointment_created"
    assert item["data"]["appointment_id"] == str(appointment["id"])
    assert item["read_at"] is None

    response = await client.get("/api/v1/notifications/", headers=other_headers)
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_mark_notification_read(
    client: AsyncClient,
    auth_headers: dict,
    appointment: dict,
) -> None:
    """Reading a notification clears it from the unread count."""
    listing = await client.get("/api/v1/notifications/", headers=auth_headers)
    notification_id = listing.json()["items"][0]["id"]

    response = await client.patch(
        f"/api/v1/notifications/{notification_id}/read",
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["read_at"] is not None

    unread = await client.get(
        "/api/v1/notifications/",
        params={"unread_only": True},
        headers=auth_headers,
    )
    assert unread.json()["total"] == 0
    assert unread.json()["unread"] == 0


@pytest.mark.asyncio
async def test_mark_someone_elses_notification(
    client: AsyncClient,
    auth_headers: dict,
    other_headers: dict,
    appointment: dict,
) -> None:
    """Notifications of other users are invisible."""
    listing = await client.get("/api/v1/notifications/", headers=auth_headers)
    notification_id = listing.json()["items"][0]["id"]

    response = await client.patch(
        f"/api/v1/notifications/{notification_id}/read",
        headers=other_headers,
    )
    assert response.status_code == 404

    response = await client.patch(
        f"/api/v1/notifications/{uuid4()}/read",
        headers=auth_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_notifications_require_auth(client: AsyncClient) -> None:
    """Notification history is private."""
    response = await client.get("/api/v1/notifications/")
    assert response.status_code == 401


def test_publish_payload():
    """Pushes go to the user's channel as a JSON envelope."""
    redis_client = MagicMock()
    user_id = uuid4()

    assert NotificationService.publish(redis_client, user_id, {"title": "Hi", "id": uuid4()})

    channel, message = redis_client.publish.call_args.args
    assert channel == f"notifications:{user_id}"
    body = json.loads(message)
    assert body["type"] == "notification"
    assert body["data"]["title"] == "Hi"


def test_publish_failure_is_swallowed():
    """Redis problems never propagate to the caller."""
    redis_client = MagicMock()
    redis_client.publish.side_effect = ConnectionError("redis down")

    assert NotificationService.publish(redis_client, uuid4(), {"title": "Hi"}) is False
    assert NotificationService.publish(None, uuid4(), {"title": "Hi"}) is False


@pytest.mark.asyncio
async def test_notify_appointment_survives_storage_errors(db_session, monkeypatch) -> None:
    """A failing notification write is logged and does not raise."""

    async def broken_send(*args, **kwargs):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(NotificationService, "send_to_user", staticmethod(broken_send))

    result = await NotificationService.notify_appointment(
        db_session,
        {"id": uuid4(), "patient_id": uuid4(), "appointment_at": None},
        NotificationType.APPOINTMENT_CONFIRMED,
    )
    assert result is None
