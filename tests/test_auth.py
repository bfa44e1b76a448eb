"""Tests for signup, login, token refresh and role checks."""
import pytest
from httpx import AsyncClient

from ecocomply.dependencies.auth import create_refresh_token
from tests.factories import TEST_PASSWORD


@pytest.mark.asyncio
async def test_signup_creates_company_and_owner(client: AsyncClient):
    resp = await client.post(
        "/api/v1/auth/signup",
        json={
            "email": "New.Owner@greenfields.co.uk",
            "password": "s3cure-password",
            "full_name": "Nia Owner",
            "company_name": "Greenfields Ltd",
        },
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "new.owner@greenfields.co.uk"
    assert data["user"]["roles"] == ["OWNER"]

    me = await client.get(
        "/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"}
    )
    assert me.status_code == 200
    assert me.json()["data"]["company_id"] == data["user"]["company_id"]


@pytest.mark.asyncio
async def test_signup_duplicate_email(client: AsyncClient, owner):
    resp = await client.post(
        "/api/v1/auth/signup",
        json={
            "email": owner.email.upper(),
            "password": "s3cure-password",
            "full_name": "Dup",
            "company_name": "Dup Ltd",
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_signup_short_password_is_rejected(client: AsyncClient):
    resp = await client.post(
        "/api/v1/auth/signup",
        json={
            "email": "a@greenfields.co.uk",
            "password": "short",
            "full_name": "A",
            "company_name": "B",
        },
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["details"]


@pytest.mark.asyncio
async def test_login_sets_cookie(client: AsyncClient, owner):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": owner.email, "password": TEST_PASSWORD}
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["id"] == owner.id
    assert "access_token" in resp.cookies


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, owner):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": owner.email, "password": "not-the-password"}
    )
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["error"]["message"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_refresh_issues_access_token(client: AsyncClient, owner):
    resp = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": create_refresh_token(owner)}
    )
    assert resp.status_code == 200
    token = resp.json()["data"]["access_token"]
    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(client: AsyncClient, owner_headers):
    access = owner_headers["Authorization"].split(" ", 1)[1]
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": access})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_missing_token_returns_401(client: AsyncClient):
    resp = await client.get("/api/v1/sites")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["message"] == "Authentication required"
    assert resp.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_garbage_token_returns_401(client: AsyncClient):
    resp = await client.get("/api/v1/sites", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient, owner_headers):
    resp = await client.get(
        "/api/v1/auth/me", headers={**owner_headers, "X-Request-Id": "req-123"}
    )
    assert resp.status_code == 200
    assert resp.headers["X-Request-Id"] == "req-123"
    assert resp.json()["meta"]["request_id"] == "req-123"


@pytest.mark.asyncio
async def test_staff_cannot_create_site(client: AsyncClient, staff_headers):
    resp = await client.post("/api/v1/sites", json={"name": "New Site"}, headers=staff_headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"
