"""Tests for doctor directory endpoints."""

from uuid import uuid4

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_doctor_as_admin(
    client: AsyncClient,
    admin_headers: dict,
    sample_doctor_data: dict,
):
    """Admins can add doctors to the directory."""
    response = await client.post("/api/v1/doctors/", json=sample_doctor_data, headers=admin_headers)
    assert response.status_code == 201
    data = response.json()
    assert data["name"] == sample_doctor_data["name"]
    assert data["consultation_fee"] == 2990
    assert "id" in data


@pytest.mark.asyncio
async def test_create_doctor_as_patient(
    client: AsyncClient,
    auth_headers: dict,
    sample_doctor_data: dict,
):
    """Patients cannot add doctors."""
    response = await client.post("/api/v1/doctors/", json=sample_doctor_data, headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_doctor_duplicate_email(
    client: AsyncClient,
    admin_headers: dict,
    sample_doctor_data: dict,
):
    """Doctor emails are unique."""
    first = await client.post("/api/v1/doctors/", json=sample_doctor_data, headers=admin_headers)
    assert first.status_code == 201

    second = await client.post("/api/v1/doctors/", json=sample_doctor_data, headers=admin_headers)
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_create_doctor_rejects_non_positive_fee(
    client: AsyncClient,
    admin_headers: dict,
    sample_doctor_data: dict,
):
    """Consultation fees must be positive."""
    sample_doctor_data["consultation_fee"] = 0
    response = await client.post("/api/v1/doctors/", json=sample_doctor_data, headers=admin_headers)
    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_list_doctors(client: AsyncClient, doctor: dict):
    """The directory is public."""
    response = await client.get("/api/v1/doctors/")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["id"] == str(doctor["id"])


@pytest.mark.asyncio
async def test_list_doctors_by_specialty(client: AsyncClient, doctor: dict):
    """Specialty filtering is case-insensitive."""
    response = await client.get("/api/v1/doctors/", params={"specialty": "cardio"})
    assert response.json()["total"] == 1

    response = await client.get("/api/v1/doctors/", params={"specialty": "dermatology"})
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_get_doctor(client: AsyncClient, doctor: dict):
    """Test getting a doctor by ID."""
    response = await client.get(f"/api/v1/doctors/{doctor['id']}")
    assert response.status_code == 200
    assert response.json()["specialty"] == "Cardiology"


@pytest.mark.asyncio
async def test_get_doctor_not_found(client: AsyncClient):
    """Test getting a non-existent doctor."""
    response = await client.get(f"/api/v1/doctors/{uuid4()}")
    assert response.status_code == 404
