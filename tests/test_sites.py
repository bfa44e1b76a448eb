"""Tests for site CRUD and company scoping."""
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_and_get_site(client: AsyncClient, owner_headers):
    resp = await client.post(
        "/api/v1/sites",
        json={"name": "Eastside Plant", "postcode": "EE1 1EE", "regulator": "SEPA"},
        headers=owner_headers,
    )
    assert resp.status_code == 201
    site = resp.json()["data"]
    assert site["status"] == "ACTIVE"

    resp = await client.get(f"/api/v1/sites/{site['id']}", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["regulator"] == "SEPA"


@pytest.mark.asyncio
async def test_update_site(client: AsyncClient, owner_headers, site):
    resp = await client.put(
        f"/api/v1/sites/{site.id}", json={"name": "Renamed Works"}, headers=owner_headers
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["name"] == "Renamed Works"
    assert data["postcode"] == "AB1 2CD"


@pytest.mark.asyncio
async def test_list_sites_paginates(client: AsyncClient, owner_headers):
    for i in range(3):
        resp = await client.post("/api/v1/sites", json={"name": f"Site {i}"}, headers=owner_headers)
        assert resp.status_code == 201

    resp = await client.get("/api/v1/sites?limit=2", headers=owner_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["data"]) == 2
    pagination = body["meta"]["pagination"]
    assert pagination["has_more"] is True

    resp = await client.get(
        f"/api/v1/sites?limit=2&cursor={pagination['next_cursor']}", headers=owner_headers
    )
    rest = resp.json()
    assert len(rest["data"]) == 1
    assert rest["meta"]["pagination"]["has_more"] is False
    seen = {s["id"] for s in body["data"]} | {s["id"] for s in rest["data"]}
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_other_company_cannot_see_site(client: AsyncClient, other_headers, site):
    resp = await client.get(f"/api/v1/sites/{site.id}", headers=other_headers)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"

    resp = await client.get("/api/v1/sites", headers=other_headers)
    assert resp.json()["data"] == []


@pytest.mark.asyncio
async def test_create_site_validates_body(client: AsyncClient, owner_headers):
    resp = await client.post("/api/v1/sites", json={"name": ""}, headers=owner_headers)
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
