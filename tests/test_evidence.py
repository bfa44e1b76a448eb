"""Tests for evidence upload, listing, download and linking."""
import io
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from ecocomply.models.database_models import AuditLog, SiteAssignment
from ecocomply.routers.evidence import evidence_file_type, parse_obligation_ids
from ecocomply.utils.helpers import compliance_period_for, utcnow
from tests.factories import dummy_pdf, make_document, make_evidence, make_obligation, make_site


def _pdf(name="monitoring-report.pdf"):
    return {"file": (name, io.BytesIO(dummy_pdf()), "application/pdf")}


@pytest.mark.asyncio
async def test_upload_links_to_many_obligations(client: AsyncClient, db_session, staff_headers, site):
    document = await make_document(db_session, site)
    first = await make_obligation(db_session, document)
    second = await make_obligation(db_session, document, title="Keep records")

    resp = await client.post(
        "/api/v1/evidence",
        headers=staff_headers,
        data={
            "obligation_ids": json.dumps([first.id, second.id]),
            "metadata": json.dumps({"description": "March stack test", "evidence_type": "LAB_REPORT"}),
        },
        files=_pdf(),
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["file_type"] == "PDF"
    assert data["site_id"] == site.id
    assert data["evidence_type"] == "LAB_REPORT"
    assert data["compliance_period"] == compliance_period_for(utcnow().date())
    assert {link["obligation_id"] for link in data["links"]} == {first.id, second.id}

    audits = (
        await db_session.execute(select(AuditLog).where(AuditLog.action == "EVIDENCE_LINKED"))
    ).scalars().all()
    assert {a.changes["obligation_id"] for a in audits} == {first.id, second.id}
    assert {a.changes["evidence_id"] for a in audits} == {data["id"]}


@pytest.mark.asyncio
async def test_upload_requires_an_obligation(client: AsyncClient, staff_headers, site):
    resp = await client.post("/api/v1/evidence", headers=staff_headers, files=_pdf())
    assert resp.status_code == 422
    assert resp.json()["error"]["message"] == "At least one obligation_id is required"


@pytest.mark.asyncio
async def test_upload_unknown_obligation(client: AsyncClient, staff_headers, site):
    resp = await client.post(
        "/api/v1/evidence",
        headers=staff_headers,
        data={"obligation_id": "00000000-0000-0000-0000-000000000000"},
        files=_pdf(),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_upload_rejects_mixed_sites(client: AsyncClient, db_session, company, staff_headers, site):
    north = await make_site(db_session, company)
    first = await make_obligation(db_session, await make_document(db_session, site))
    second = await make_obligation(db_session, await make_document(db_session, north))

    resp = await client.post(
        "/api/v1/evidence",
        headers=staff_headers,
        data={"obligation_ids": f"{first.id},{second.id}"},
        files=_pdf(),
    )
    assert resp.status_code == 422
    assert "same site" in resp.json()["error"]["message"]


@pytest.mark.asyncio
async def test_list_and_filter_by_obligation(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    first = await make_obligation(db_session, document)
    second = await make_obligation(db_session, document, title="Keep records")
    linked = await make_evidence(db_session, first)
    await make_evidence(db_session, second, file_name="records.pdf")
    archived = await make_evidence(db_session, first, file_name="old.pdf")
    archived.is_archived = True
    await db_session.commit()

    resp = await client.get("/api/v1/evidence", headers=owner_headers)
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 2

    resp = await client.get(f"/api/v1/evidence?obligation_id={first.id}", headers=owner_headers)
    assert [e["id"] for e in resp.json()["data"]] == [linked.id]


@pytest.mark.asyncio
async def test_get_and_download(client: AsyncClient, db_session, owner_headers, site):
    obligation = await make_obligation(db_session, await make_document(db_session, site))
    evidence = await make_evidence(db_session, obligation)

    resp = await client.get(f"/api/v1/evidence/{evidence.id}", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["links"][0]["obligation_id"] == obligation.id

    resp = await client.get(f"/api/v1/evidence/{evidence.id}/download", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.content == dummy_pdf()


@pytest.mark.asyncio
async def test_link_evidence(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    first = await make_obligation(db_session, document)
    second = await make_obligation(db_session, document, title="Keep records")
    evidence = await make_evidence(db_session, first)

    resp = await client.post(
        f"/api/v1/evidence/{evidence.id}/link",
        json={"obligation_id": second.id, "notes": "Covers both"},
        headers=owner_headers,
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["obligation_id"] == second.id
    assert data["compliance_period"] == "Q1-2026"

    resp = await client.post(
        f"/api/v1/evidence/{evidence.id}/link",
        json={"obligation_id": second.id},
        headers=owner_headers,
    )
    assert resp.status_code == 422
    assert "already linked" in resp.json()["error"]["message"]


@pytest.mark.asyncio
async def test_link_across_sites_needs_shared_assignment(
    client: AsyncClient, db_session, company, owner_headers, site
):
    north = await make_site(db_session, company)
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)
    north_obligation = await make_obligation(db_session, await make_document(db_session, north))
    evidence = await make_evidence(db_session, north_obligation)

    resp = await client.post(
        f"/api/v1/evidence/{evidence.id}/link",
        json={"obligation_id": obligation.id},
        headers=owner_headers,
    )
    assert resp.status_code == 422

    db_session.add(SiteAssignment(site_id=north.id, document_id=document.id, obligations_shared=True))
    await db_session.commit()

    resp = await client.post(
        f"/api/v1/evidence/{evidence.id}/link",
        json={"obligation_id": obligation.id},
        headers=owner_headers,
    )
    assert resp.status_code == 201


def test_parse_obligation_ids():
    assert parse_obligation_ids(None, '["a", "b", "a"]') == ["a", "b"]
    assert parse_obligation_ids(None, "a, b,,c") == ["a", "b", "c"]
    assert parse_obligation_ids(" x ", None) == ["x"]
    assert parse_obligation_ids(None, None) == []


def test_evidence_file_type():
    assert evidence_file_type("photo.JPG") == "IMAGE"
    assert evidence_file_type("readings.csv") == "CSV"
    assert evidence_file_type("unknown.bin") == "DOCUMENT"
