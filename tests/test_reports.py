"""Tests for the custom report builder: columns, saved configs, generation and export."""
import csv
import io
import json
from datetime import date

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook

from ecocomply.models.database_models import ObligationCategory
from ecocomply.models.schemas import ReportConfigIn
from ecocomply.services.report_builder import export_report, generate_report, invalid_columns
from tests.factories import make_document, make_evidence, make_obligation

OBLIGATION_CONFIG = {
    "name": "Open monitoring",
    "dataType": "obligations",
    "columns": ["obligation_title", "category", "deadline_date"],
    "filters": [{"field": "category", "operator": "eq", "value": "MONITORING"}],
    "sortBy": {"column": "deadline_date", "direction": "asc"},
}


async def _seed(db_session, site):
    document = await make_document(db_session, site)
    await make_obligation(db_session, document, title="Monitor B", deadline_date=date(2026, 9, 1))
    await make_obligation(db_session, document, title="Monitor A", deadline_date=date(2026, 3, 1))
    await make_obligation(
        db_session, document, title="Report", category=ObligationCategory.REPORTING
    )
    return document


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_columns(client: AsyncClient, owner_headers):
    resp = await client.get("/api/v1/reports/columns?dataType=evidence", headers=owner_headers)
    assert resp.status_code == 200
    assert "category" in resp.json()["data"]["columns"]

    resp = await client.get("/api/v1/reports/columns?dataType=invoices", headers=owner_headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_config_lifecycle(client: AsyncClient, owner_headers):
    resp = await client.post("/api/v1/reports/configs", json=OBLIGATION_CONFIG, headers=owner_headers)
    assert resp.status_code == 201
    config_id = resp.json()["data"]["id"]

    resp = await client.get(f"/api/v1/reports/configs/{config_id}", headers=owner_headers)
    assert resp.json()["data"]["dataType"] == "obligations"
    assert resp.json()["data"]["sortBy"] == {"column": "deadline_date", "direction": "asc"}

    resp = await client.put(
        f"/api/v1/reports/configs/{config_id}",
        json={**OBLIGATION_CONFIG, "name": "Monitoring by deadline"},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["name"] == "Monitoring by deadline"

    resp = await client.get("/api/v1/reports/configs", headers=owner_headers)
    assert len(resp.json()["data"]) == 1

    resp = await client.delete(f"/api/v1/reports/configs/{config_id}", headers=owner_headers)
    assert resp.status_code == 200
    resp = await client.get(f"/api/v1/reports/configs/{config_id}", headers=owner_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_config_rejects_unknown_columns(client: AsyncClient, owner_headers):
    resp = await client.post(
        "/api/v1/reports/configs",
        json={**OBLIGATION_CONFIG, "columns": ["obligation_title", "secret"]},
        headers=owner_headers,
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["details"] == {"invalid_columns": ["secret"]}


@pytest.mark.asyncio
async def test_generate_inline_and_saved(client: AsyncClient, db_session, owner_headers, site):
    await _seed(db_session, site)

    resp = await client.post(
        "/api/v1/reports/generate", json={"config": OBLIGATION_CONFIG}, headers=owner_headers
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["totalRows"] == 2
    assert [row["obligation_title"] for row in data["data"]] == ["Monitor A", "Monitor B"]
    assert data["data"][0] == {
        "obligation_title": "Monitor A",
        "category": "MONITORING",
        "deadline_date": "2026-03-01",
    }

    resp = await client.post("/api/v1/reports/configs", json=OBLIGATION_CONFIG, headers=owner_headers)
    config_id = resp.json()["data"]["id"]
    resp = await client.post(
        "/api/v1/reports/generate", json={"configId": config_id}, headers=owner_headers
    )
    assert resp.json()["data"]["totalRows"] == 2

    resp = await client.post("/api/v1/reports/generate", json={}, headers=owner_headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_generate_scoped_to_company(client: AsyncClient, db_session, other_headers, site):
    await _seed(db_session, site)
    resp = await client.post(
        "/api/v1/reports/generate", json={"config": OBLIGATION_CONFIG}, headers=other_headers
    )
    assert resp.json()["data"]["totalRows"] == 0


@pytest.mark.asyncio
async def test_export_csv(client: AsyncClient, owner_headers):
    body = {
        "result": {
            "data": [{"name": "Riverside, North", "count": 3}],
            "columns": ["name", "count"],
        },
        "format": "csv",
        "fileName": "sites",
    }
    resp = await client.post("/api/v1/reports/export", json=body, headers=owner_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert 'filename="sites.csv"' in resp.headers["content-disposition"]
    assert resp.text == 'name,count\n"Riverside, North",3\n'

    resp = await client.post(
        "/api/v1/reports/export", json={**body, "format": "pdf"}, headers=owner_headers
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_evidence_category_maps_to_evidence_type(db_session, company, site):
    document = await make_document(db_session, site)
    obligation = await make_obligation(db_session, document)
    evidence = await make_evidence(db_session, obligation)
    evidence.evidence_type = "LAB_REPORT"
    await db_session.commit()

    config = ReportConfigIn.model_validate({
        "name": "Evidence",
        "dataType": "evidence",
        "columns": ["file_name", "category"],
        "filters": [{"field": "category", "operator": "in", "value": ["LAB_REPORT"]}],
    })
    result = await generate_report(config, company.id, db_session)
    assert result.data == [{"file_name": "monitoring-report.pdf", "category": "LAB_REPORT"}]


@pytest.mark.asyncio
async def test_unknown_filter_field_raises(db_session, company):
    config = ReportConfigIn.model_validate({
        "name": "Bad",
        "dataType": "sites",
        "columns": ["name"],
        "filters": [{"field": "nope", "operator": "eq", "value": 1}],
    })
    with pytest.raises(ValueError):
        await generate_report(config, company.id, db_session)


def test_invalid_columns():
    assert invalid_columns("deadlines", ["due_date", "colour"]) == ["colour"]
    assert invalid_columns("sites", ["name", "postcode"]) == []


def test_export_formats():
    data = [{"a": 1, "b": None}, {"a": 2, "b": {"x": 1}}]

    content, content_type, ext = export_report(data, ["a", "b"], "csv", include_headers=False)
    assert ext == "csv"
    assert list(csv.reader(io.StringIO(content.decode()))) == [["1", ""], ["2", '{"x": 1}']]

    content, content_type, ext = export_report(data, ["a", "b"], "json")
    assert content_type == "application/json"
    assert json.loads(content) == data

    content, _, ext = export_report(data, ["a", "b"], "xlsx")
    assert ext == "xlsx"
    sheet = load_workbook(io.BytesIO(content)).active
    assert [c.value for c in sheet[1]] == ["a", "b"]
    assert sheet["A3"].value == 2

    with pytest.raises(ValueError):
        export_report(data, ["a"], "pdf")


def test_export_csv_writes_lowercase_booleans():
    data = [{"name": "Riverside", "is_active": True}, {"name": "Hilltop", "is_active": False}]

    content, _, _ = export_report(data, ["name", "is_active"], "csv")

    assert list(csv.reader(io.StringIO(content.decode()))) == [
        ["name", "is_active"],
        ["Riverside", "true"],
        ["Hilltop", "false"],
    ]
