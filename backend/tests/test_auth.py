"""
Tests for authentication endpoints: registration, login and admin-created accounts.
"""

import pytest
from httpx import AsyncClient

from tutorbook.core.logging import REDACTED, redact_secrets

from tests.factories import TEST_PASSWORD


@pytest.mark.asyncio
async def test_register_user(client: AsyncClient):
    """Successful registration returns a student with a zero balance."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "new@example.com",
        "full_name": "New Student",
        "password": "securepassword123",
    })
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "new@example.com"
    assert data["role"] == "student"
    assert data["credit_balance"] == 0
    assert "hashed_password" not in data  # Never expose password hash

    login = await client.post("/api/v1/auth/login", json={
        "email": "new@example.com",
        "password": "securepassword123",
    })
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
    balance = await client.get("/api/v1/credits/balance", headers=headers)
    assert balance.json()["balance"] == 0


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, student):
    """Duplicate email returns 409, case-insensitively."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "Student@Example.com",
        "full_name": "Someone Else",
        "password": "securepassword123",
    })
    assert response.status_code == 409
    assert response.json()["code"] == "EMAIL_ALREADY_REGISTERED"


@pytest.mark.asyncio
async def test_register_weak_password(client: AsyncClient):
    """Password under 8 chars returns 422."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "weak@example.com",
        "full_name": "Weak",
        "password": "short",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, student):
    """Valid credentials return JWT token."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "student@example.com",
        "password": TEST_PASSWORD,
    })
    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"
    assert data["user_id"] == student.id
    assert data["role"] == "student"
    assert data["expires_in"] == 30 * 60


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, student):
    """Wrong password returns 401."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "student@example.com",
        "password": "wrongpassword",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_nonexistent_email(client: AsyncClient):
    """Non-existent email returns 401."""
    response = await client.post("/api/v1/auth/login", json={
        "email": "nobody@example.com",
        "password": "anypassword123",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    response = await client.get(
        "/api/v1/users/me", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me(client: AsyncClient, student_headers):
    response = await client.get("/api/v1/users/me", headers=student_headers)
    assert response.status_code == 200
    assert response.json()["email"] == "student@example.com"


@pytest.mark.asyncio
async def test_admin_creates_teacher(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/v1/users/",
        json={
            "email": "new.teacher@example.com",
            "full_name": "New Teacher",
            "password": "securepassword123",
            "role": "teacher",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["role"] == "teacher"


@pytest.mark.asyncio
async def test_student_cannot_create_accounts(client: AsyncClient, student_headers):
    response = await client.post(
        "/api/v1/users/",
        json={
            "email": "sneaky@example.com",
            "full_name": "Sneaky",
            "password": "securepassword123",
            "role": "admin",
        },
        headers=student_headers,
    )
    assert response.status_code == 403


def test_log_events_never_carry_secrets():
    event = redact_secrets(
        None, "info", {"event": "login_failed", "email": "a@example.com", "password": "hunter22"}
    )
    assert event == {"event": "login_failed", "email": "a@example.com", "password": REDACTED}
