"""
Integration tests for Authentication Flow.

Verifies Register -> Login -> Me -> Logout and the audit trail.
"""

import pytest
from sqlalchemy import select

from transit_backend.app.models.audit_log import AuditLog
from transit_backend.app.services.audit import AuditAction


@pytest.mark.asyncio
async def test_admin_registration_blocked(client):
    """ADMIN role cannot be created via API."""
    payload = {
        "email": "admin@test.com",
        "username": "admin",
        "password": "password123",
        "role": "ADMIN"
    }
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 403
    data = response.json()
    assert data["error_code"] == "ERR_FORBIDDEN"
    assert "Admin users cannot be registered" in data["message"]


@pytest.mark.asyncio
async def test_passenger_is_default_role(client):
    payload = {"email": "rider@test.com", "username": "rider1", "password": "password123"}
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 201
    assert response.json()["role"] == "PASSENGER"


@pytest.mark.asyncio
async def test_fleet_owner_register_login_me(client):
    payload = {
        "email": "owner@test.com",
        "username": "fleetowner",
        "password": "password123",
        "role": "FLEET_OWNER"
    }
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 201

    response = await client.post("/v1/auth/login", json={"username": "owner@test.com", "password": "password123"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    me = response.json()
    assert me["username"] == "fleetowner"
    assert me["role"] == "FLEET_OWNER"


@pytest.mark.asyncio
async def test_duplicate_username_rejected(client):
    payload = {"email": "a@test.com", "username": "dup_user", "password": "password123"}
    assert (await client.post("/v1/auth/register", json=payload)).status_code == 201

    payload["email"] = "b@test.com"
    response = await client.post("/v1/auth/register", json=payload)
    assert response.status_code == 400
    assert response.json()["message"] == "Username already registered"


@pytest.mark.asyncio
async def test_failed_login_is_audited(client, db_session, passenger_user):
    response = await client.post("/v1/auth/login", json={"username": "rider", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "ERR_UNAUTHORIZED"

    result = await db_session.execute(select(AuditLog).where(AuditLog.action == AuditAction.LOGIN_FAILED))
    entry = result.scalar_one()
    assert entry.actor_id == passenger_user.id
    assert entry.meta_data["reason"] == "Invalid password"


@pytest.mark.asyncio
async def test_logout_revokes_token(client, redis_mock):
    payload = {"email": "bye@test.com", "username": "leaver", "password": "password123"}
    token = (await client.post("/v1/auth/register", json=payload)).json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    response = await client.post("/v1/auth/logout", headers=headers)
    assert response.status_code == 200
    assert any(key.endswith(token) for key in redis_mock.store)

    response = await client.get("/v1/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["message"] == "Token has been revoked"


@pytest.mark.asyncio
async def test_missing_token_rejected(client):
    response = await client.get("/v1/auth/me")
    assert response.status_code in (401, 403)
