"""Tests for obligation listing, versioned edits, mark-N/A and evidence unlinking."""
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from ecocomply.models.database_models import (
    AuditLog,
    Deadline,
    Frequency,
    ObligationCategory,
    ObligationEvidenceLink,
    Schedule,
)
from tests.factories import make_document, make_evidence, make_obligation


@pytest.mark.asyncio
async def test_list_obligations_with_filters(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    monitoring = await make_obligation(db_session, document, deadline_date=date(2026, 6, 30))
    await make_obligation(
        db_session,
        document,
        title="Submit annual report",
        category=ObligationCategory.REPORTING,
        deadline_date=date(2027, 1, 31),
    )
    await make_evidence(db_session, monitoring)

    resp = await client.get("/api/v1/obligations", headers=owner_headers)
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 2

    resp = await client.get("/api/v1/obligations?category=MONITORING", headers=owner_headers)
    items = resp.json()["data"]
    assert [o["id"] for o in items] == [monitoring.id]
    assert items[0]["evidence_count"] == 1

    resp = await client.get(
        "/api/v1/obligations",
        params={"deadline_date[gte]": "2026-12-01"},
        headers=owner_headers,
    )
    assert [o["obligation_title"] for o in resp.json()["data"]] == ["Submit annual report"]


@pytest.mark.asyncio
async def test_get_obligation_includes_schedules_and_deadlines(
    client: AsyncClient, db_session, owner_headers, site
):
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)
    db_session.add(Schedule(
        obligation_id=obligation.id,
        frequency=Frequency.MONTHLY,
        base_date=date(2026, 1, 1),
        next_due_date=date(2026, 2, 1),
    ))
    db_session.add(Deadline(
        obligation_id=obligation.id,
        company_id=obligation.company_id,
        site_id=obligation.site_id,
        due_date=date(2026, 2, 1),
        compliance_period="Q1-2026",
    ))
    await db_session.commit()
    await make_evidence(db_session, obligation)

    resp = await client.get(f"/api/v1/obligations/{obligation.id}", headers=owner_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert len(data["schedules"]) == 1
    assert data["deadlines"][0]["due_date"] == "2026-02-01"
    assert data["linked_evidence"][0]["file_name"] == "monitoring-report.pdf"
    assert data["evidence_count"] == 1


@pytest.mark.asyncio
async def test_update_obligation_is_versioned_and_audited(
    client: AsyncClient, db_session, staff_headers, staff, site
):
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)

    resp = await client.put(
        f"/api/v1/obligations/{obligation.id}",
        json={"obligation_title": "Monitor stack emissions", "frequency": "QUARTERLY"},
        headers=staff_headers,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["version_number"] == 2
    assert data["review_status"] == "EDITED"
    entry = data["version_history"][-1]
    assert entry["updated_by"] == staff.id
    assert entry["changes"]["obligation_title"] == {
        "old": "Monitor emissions to air",
        "new": "Monitor stack emissions",
    }
    assert entry["changes"]["frequency"] == {"old": "MONTHLY", "new": "QUARTERLY"}

    audit = (
        await db_session.execute(select(AuditLog).where(AuditLog.entity_id == obligation.id))
    ).scalars().all()
    assert [a.action for a in audit] == ["OBLIGATION_UPDATED"]


@pytest.mark.asyncio
async def test_update_without_changes_keeps_version(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)

    resp = await client.put(
        f"/api/v1/obligations/{obligation.id}",
        json={"obligation_title": "Monitor emissions to air"},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["version_number"] == 1
    assert resp.json()["data"]["review_status"] == "AUTO_CONFIRMED"


@pytest.mark.asyncio
async def test_update_cannot_move_obligation(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    other_document = await make_document(db_session, site, title="Consent")
    obligation = await make_obligation(db_session, document)

    resp = await client.put(
        f"/api/v1/obligations/{obligation.id}",
        json={"document_id": other_document.id},
        headers=owner_headers,
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["details"] == {"field": "document_id"}


@pytest.mark.asyncio
async def test_mark_not_applicable(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)

    resp = await client.put(
        f"/api/v1/obligations/{obligation.id}/mark-na",
        json={"reason": "   "},
        headers=owner_headers,
    )
    assert resp.status_code == 422

    resp = await client.put(
        f"/api/v1/obligations/{obligation.id}/mark-na",
        json={"reason": "Plant decommissioned"},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "NOT_APPLICABLE"
    assert data["review_status"] == "NOT_APPLICABLE"
    assert data["review_notes"] == "Plant decommissioned"


@pytest.mark.asyncio
async def test_unlink_evidence(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)
    evidence = await make_evidence(db_session, obligation)

    resp = await client.get(f"/api/v1/obligations/{obligation.id}/evidence", headers=owner_headers)
    assert len(resp.json()["data"]) == 1

    resp = await client.delete(
        f"/api/v1/obligations/{obligation.id}/evidence/{evidence.id}/unlink?reason=Wrong%20period",
        headers=owner_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["unlinked_at"] is not None

    # Link rows are kept for the audit trail
    links = (
        await db_session.execute(
            select(ObligationEvidenceLink).where(ObligationEvidenceLink.evidence_id == evidence.id)
        )
    ).scalars().all()
    assert len(links) == 1
    assert links[0].unlink_reason == "Wrong period"

    resp = await client.get(f"/api/v1/obligations/{obligation.id}/evidence", headers=owner_headers)
    assert resp.json()["data"] == []

    resp = await client.delete(
        f"/api/v1/obligations/{obligation.id}/evidence/{evidence.id}/unlink",
        headers=owner_headers,
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_obligation_scoped_to_company(client: AsyncClient, db_session, other_headers, site):
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)
    resp = await client.get(f"/api/v1/obligations/{obligation.id}", headers=other_headers)
    assert resp.status_code == 404
