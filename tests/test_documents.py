"""Tests for document upload, listing, editing, extraction status and deletion."""
import asyncio
import io

import pytest
from httpx import AsyncClient

from ecocomply.config import settings
from ecocomply.models.database_models import ExtractionLog, ExtractionStatus
from ecocomply.routers import documents as documents_router
from ecocomply.routers.documents import extraction_progress
from ecocomply.services.extraction_pipeline import EXTRACTION_JOB
from ecocomply.services.job_manager import job_manager
from tests.factories import dummy_pdf, make_document, make_obligation


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _upload(client: AsyncClient, headers, site_id, filename="permit.pdf", document_type="PERMIT"):
    return await client.post(
        "/api/v1/documents",
        headers=headers,
        data={"site_id": site_id, "document_type": document_type},
        files={"file": (filename, io.BytesIO(dummy_pdf()), "application/pdf")},
    )


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_upload_document(client: AsyncClient, staff_headers, site):
    resp = await _upload(client, staff_headers, site.id, filename="EPR-AB1234.pdf")
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["title"] == "EPR-AB1234"
    assert data["document_type"] == "PERMIT"
    # Background jobs are disabled in tests, so nothing was queued
    assert data["extraction_status"] == "PENDING"
    assert data["obligation_count"] == 0
    assert data["file_url"] == f"/api/v1/documents/{data['id']}/download"
    assert len(data["metadata"]["file_hash"]) == 64


@pytest.mark.asyncio
async def test_upload_unsupported_type(client: AsyncClient, staff_headers, site):
    resp = await client.post(
        "/api/v1/documents",
        headers=staff_headers,
        data={"site_id": site.id, "document_type": "PERMIT"},
        files={"file": ("notes.txt", b"hello world", "text/plain")},
    )
    assert resp.status_code == 422
    assert "Unsupported file type" in resp.json()["error"]["message"]


@pytest.mark.asyncio
async def test_upload_invalid_document_type(client: AsyncClient, staff_headers, site):
    resp = await _upload(client, staff_headers, site.id, document_type="LICENCE")
    assert resp.status_code == 422
    assert resp.json()["error"]["details"] == {"field": "document_type"}


@pytest.mark.asyncio
async def test_upload_requires_file(client: AsyncClient, staff_headers, site):
    resp = await client.post(
        "/api/v1/documents",
        headers=staff_headers,
        data={"site_id": site.id, "document_type": "PERMIT"},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_upload_to_unknown_site(client: AsyncClient, staff_headers):
    resp = await _upload(client, staff_headers, "00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Read / edit / delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_documents_with_counts(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    await make_obligation(db_session, document, title="Monitor emissions")
    await make_obligation(db_session, document, title="Submit annual report")

    resp = await client.get(f"/api/v1/documents?site_id={site.id}", headers=owner_headers)
    assert resp.status_code == 200
    items = resp.json()["data"]
    assert len(items) == 1
    assert items[0]["obligation_count"] == 2


@pytest.mark.asyncio
async def test_update_document_merges_metadata(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    resp = await client.put(
        f"/api/v1/documents/{document.id}",
        json={"title": "  Varied permit  ", "metadata": {"variation": "V002"}},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["title"] == "Varied permit"
    assert data["metadata"]["variation"] == "V002"
    assert "file_hash" in data["metadata"]


@pytest.mark.asyncio
async def test_update_document_rejects_blank_title(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    resp = await client.put(
        f"/api/v1/documents/{document.id}", json={"title": "   "}, headers=owner_headers
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_delete_is_soft_and_manager_only(
    client: AsyncClient, db_session, owner_headers, staff_headers, site
):
    document = await make_document(db_session, site)

    resp = await client.delete(f"/api/v1/documents/{document.id}", headers=staff_headers)
    assert resp.status_code == 403

    resp = await client.delete(f"/api/v1/documents/{document.id}", headers=owner_headers)
    assert resp.status_code == 200

    resp = await client.get(f"/api/v1/documents/{document.id}", headers=owner_headers)
    assert resp.status_code == 404

    await db_session.refresh(document)
    assert document.deleted_at is not None


@pytest.mark.asyncio
async def test_download_document(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site)
    resp = await client.get(f"/api/v1/documents/{document.id}/download", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.content == dummy_pdf()
    assert resp.headers["content-type"] == "application/pdf"


@pytest.mark.asyncio
async def test_other_company_cannot_read_document(client: AsyncClient, db_session, other_headers, site):
    document = await make_document(db_session, site)
    resp = await client.get(f"/api/v1/documents/{document.id}", headers=other_headers)
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_extract_marks_processing_and_blocks_repeat(
    client: AsyncClient, db_session, staff_headers, site, monkeypatch
):
    document = await make_document(db_session, site)
    release = asyncio.Event()
    monkeypatch.setattr(settings, "BACKGROUND_JOBS_ENABLED", True)
    monkeypatch.setattr(
        documents_router,
        "_queue_extraction",
        lambda document_id: job_manager.enqueue(EXTRACTION_JOB, document_id, release.wait),
    )

    try:
        resp = await client.post(f"/api/v1/documents/{document.id}/extract", headers=staff_headers)
        assert resp.status_code == 202
        assert resp.json()["data"]["extraction_status"] == "PROCESSING"
        assert resp.json()["data"]["queued"] is True

        resp = await client.post(f"/api/v1/documents/{document.id}/extract", headers=staff_headers)
        assert resp.status_code == 422
        assert "already in progress" in resp.json()["error"]["message"]
    finally:
        release.set()
        job_manager.reset()


@pytest.mark.asyncio
async def test_extract_restarts_stuck_processing_document(
    client: AsyncClient, db_session, staff_headers, site, monkeypatch
):
    document = await make_document(db_session, site, extraction_status=ExtractionStatus.PROCESSING)
    queued = []
    monkeypatch.setattr(settings, "BACKGROUND_JOBS_ENABLED", True)
    monkeypatch.setattr(documents_router, "_queue_extraction", queued.append)

    resp = await client.post(f"/api/v1/documents/{document.id}/extract", headers=staff_headers)

    assert resp.status_code == 202
    assert queued == [document.id]


@pytest.mark.asyncio
async def test_extract_without_background_jobs_leaves_status(
    client: AsyncClient, db_session, staff_headers, site
):
    document = await make_document(db_session, site)

    resp = await client.post(f"/api/v1/documents/{document.id}/extract", headers=staff_headers)

    assert resp.status_code == 202
    assert resp.json()["data"]["queued"] is False
    assert resp.json()["data"]["extraction_status"] == "PENDING"
    await db_session.refresh(document)
    assert document.extraction_status == ExtractionStatus.PENDING


@pytest.mark.asyncio
async def test_extraction_status_completed(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site, extraction_status=ExtractionStatus.COMPLETED)
    await make_obligation(db_session, document)

    resp = await client.get(
        f"/api/v1/documents/{document.id}/extraction-status", headers=owner_headers
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["extraction_status"] == "COMPLETED"
    assert data["progress"] == 100
    assert data["obligation_count"] == 1


@pytest.mark.asyncio
async def test_extraction_results_include_log(client: AsyncClient, db_session, owner_headers, site):
    document = await make_document(db_session, site, extraction_status=ExtractionStatus.COMPLETED)
    await make_obligation(db_session, document)
    db_session.add(ExtractionLog(
        document_id=document.id,
        company_id=document.company_id,
        model_identifier="gpt-4o",
        input_tokens=12_000,
        output_tokens=1_500,
        estimated_cost=0.036,
        obligations_extracted=1,
    ))
    await db_session.commit()

    resp = await client.get(
        f"/api/v1/documents/{document.id}/extraction-results", headers=owner_headers
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["obligation_count"] == 1
    assert data["extraction_log"]["input_tokens"] == 12_000
    assert data["extraction_log"]["errors"] == []

    resp = await client.get(f"/api/v1/documents/{document.id}/obligations", headers=owner_headers)
    assert len(resp.json()["data"]) == 1


def test_extraction_progress_phases():
    assert extraction_progress("PENDING", 0, False, 0, False) == 0
    assert extraction_progress("COMPLETED", 999, True, 0, False) == 100
    assert extraction_progress("PROCESSING", 2, False, 0, True) == 10
    assert extraction_progress("PROCESSING", 20, False, 0, True) == 28
    assert extraction_progress("PROCESSING", 120, True, 0, True) == 90
    assert extraction_progress("PROCESSING", 60, True, 12, True) == 85
    # Stuck: over five minutes with no running job
    assert extraction_progress("PROCESSING", 600, True, 0, False) == 15
