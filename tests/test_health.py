"""Tests for health, root, worker and analytics endpoints."""
import asyncio

import pytest
from httpx import AsyncClient

from ecocomply.models.database_models import ExtractionLog, PatternCandidate
from ecocomply.routers.health import overall_status
from ecocomply.services.job_manager import job_manager
from tests.factories import make_document


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"]["status"] == "up"
    # Redis is not configured in tests
    assert "redis" not in data["checks"]
    assert resp.headers["cache-control"] == "no-store"
    assert resp.headers["x-health-status"] == "healthy"


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "EcoComply API"
    assert data["endpoints"]["packs"] == "/api/v1/packs"


@pytest.mark.asyncio
async def test_v1_health_overview(client: AsyncClient):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    services = resp.json()["data"]["services"]
    assert services == {
        "database": "up",
        "redis": "not_configured",
        "storage": "up",
        "llm": "not_configured",
    }


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client: AsyncClient):
    resp = await client.get("/api/v1/nowhere")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"
    assert resp.headers["x-request-id"]


def test_overall_status():
    assert overall_status({"database": {"status": "up"}}) == "healthy"
    assert overall_status({"database": {"status": "up"}, "redis": {"status": "down"}}) == "degraded"
    assert overall_status({"database": {"status": "down"}}) == "unhealthy"


# ---------------------------------------------------------------------------
# Workers / job manager
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_workers_health_counts_jobs(client: AsyncClient):
    async def ok():
        return None

    async def boom():
        raise RuntimeError("boom")

    job_manager.enqueue("test", "a", ok)
    job_manager.enqueue("test", "b", boom)
    await asyncio.sleep(0.05)

    resp = await client.get("/api/v1/health/workers")
    data = resp.json()["data"]
    assert data["jobs"]["completed"] == 1
    assert data["jobs"]["failed"] == 1
    assert data["status"] == "healthy"
    assert job_manager.get_status("test", "b").error == "boom"


@pytest.mark.asyncio
async def test_job_manager_refuses_duplicates():
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow():
        started.set()
        await release.wait()

    try:
        job_manager.enqueue("test", "slow", slow)
        await started.wait()
        assert job_manager.is_running("test", "slow")
        with pytest.raises(RuntimeError):
            job_manager.enqueue("test", "slow", slow)
        release.set()
        await asyncio.sleep(0.05)
        assert not job_manager.is_running("test", "slow")
    finally:
        job_manager.reset()


@pytest.mark.asyncio
async def test_job_manager_prunes_finished_statuses():
    release = asyncio.Event()

    async def ok():
        return None

    try:
        job_manager.enqueue("test", "done", ok)
        job_manager.enqueue("test", "running", release.wait)
        await asyncio.sleep(0.05)

        assert job_manager.prune(max_age=3600) == 0
        assert job_manager.get_status("test", "done") is not None

        assert job_manager.prune(max_age=0) == 1
        assert job_manager.get_status("test", "done") is None
        assert job_manager.get_status("test", "running") is not None
    finally:
        release.set()
        job_manager.reset()


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cost_savings(client: AsyncClient, db_session, company, owner_headers, staff_headers, site):
    document = await make_document(db_session, site)
    for cost in (0.03, 0.05):
        db_session.add(ExtractionLog(
            document_id=document.id,
            company_id=company.id,
            model_identifier="gpt-4o",
            input_tokens=10_000,
            output_tokens=1_000,
            estimated_cost=cost,
            obligations_extracted=5,
            rule_library_hits=1,
        ))
    db_session.add(PatternCandidate(company_id=company.id, pattern_text="shall monitor"))
    await db_session.commit()

    resp = await client.get("/api/v1/analytics/cost-savings", headers=staff_headers)
    assert resp.status_code == 403

    resp = await client.get("/api/v1/analytics/cost-savings?period_days=7", headers=owner_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["period"]["days"] == 7
    assert data["overview"]["documents_processed"] == 1
    assert data["overview"]["obligations_extracted"] == 10
    assert data["overview"]["total_cost"] == pytest.approx(0.08)
    assert data["overview"]["avg_cost_per_document"] == pytest.approx(0.08)
    assert data["cost_savings"]["rule_library_hits"] == 2
    assert data["cost_savings"]["estimated_savings"] == pytest.approx(0.28)
    assert data["cost_savings"]["baseline_llm_cost"] == pytest.approx(0.02)
    assert data["cost_savings"]["pending_pattern_candidates"] == 1
    assert len(data["trend"]) == 1
    assert data["trend"][0]["documents"] == 1


@pytest.mark.asyncio
async def test_cost_savings_period_bounds(client: AsyncClient, owner_headers):
    resp = await client.get("/api/v1/analytics/cost-savings?period_days=0", headers=owner_headers)
    assert resp.status_code == 422
