"""
Health check endpoints.

GET /api/health              — liveness with database / redis checks (503 when unhealthy)
GET /api/v1/health           — service overview in the standard envelope
GET /api/v1/health/workers   — background job counts
"""
import logging
import os
import time
from typing import Any, Dict

import redis.asyncio as aioredis
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ecocomply.config import settings
from ecocomply.database import AsyncSessionLocal
from ecocomply.services.job_manager import job_manager
from ecocomply.services.storage import get_storage
from ecocomply.utils.api_response import success_response
from ecocomply.utils.helpers import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()
v1_router = APIRouter()

STARTED_AT = time.monotonic()


async def check_database() -> Dict[str, Any]:
    t0 = time.perf_counter()
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return {"status": "up", "latency_ms": round((time.perf_counter() - t0) * 1000, 2)}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {
            "status": "down",
            "latency_ms": round((time.perf_counter() - t0) * 1000, 2),
            "error": str(e),
        }


async def check_redis() -> Dict[str, Any]:
    t0 = time.perf_counter()
    client = aioredis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
        return {"status": "up", "latency_ms": round((time.perf_counter() - t0) * 1000, 2)}
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return {
            "status": "down",
            "latency_ms": round((time.perf_counter() - t0) * 1000, 2),
            "error": str(e),
        }
    finally:
        await client.aclose()


def overall_status(checks: Dict[str, Dict[str, Any]]) -> str:
    """healthy if every check is up, unhealthy if all are down, else degraded."""
    states = [c["status"] for c in checks.values()]
    if all(s == "up" for s in states):
        return "healthy"
    if all(s == "down" for s in states):
        return "unhealthy"
    return "degraded"


async def run_checks() -> Dict[str, Dict[str, Any]]:
    checks = {"database": await check_database()}
    if settings.REDIS_URL:
        checks["redis"] = await check_redis()
    return checks


@router.get("")
async def health_check():
    """
    Liveness and dependency check.

    Returns 503 with ``status: unhealthy`` when every dependency is down.
    """
    checks = await run_checks()
    overall = overall_status(checks)
    body = {
        "status": overall,
        "version": settings.APP_VERSION,
        "uptime_seconds": int(time.monotonic() - STARTED_AT),
        "timestamp": utcnow().isoformat(),
        "checks": checks,
    }
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if overall == "unhealthy" else status.HTTP_200_OK,
        content=body,
        headers={"Cache-Control": "no-store", "X-Health-Status": overall},
    )


@v1_router.get("")
async def health_overview(request: Request):
    checks = await run_checks()
    storage_ok = False
    try:
        storage_ok = get_storage().is_writable()
    except OSError as e:
        logger.error(f"Storage health check failed: {e}")

    services = {
        "database": checks["database"]["status"],
        "redis": checks["redis"]["status"] if "redis" in checks else "not_configured",
        "storage": "up" if storage_ok else "down",
        "llm": "configured" if settings.OPENAI_API_KEY else "not_configured",
    }
    return success_response(request, {
        "status": overall_status(checks),
        "version": settings.APP_VERSION,
        "timestamp": utcnow().isoformat(),
        "upload_dir": os.path.abspath(settings.UPLOAD_DIR),
        "services": services,
    })


@v1_router.get("/workers")
async def workers_health(request: Request):
    counts = job_manager.counts()
    degraded = counts["failed"] > 0 and counts["failed"] > counts["completed"]
    running = counts["active"] > 0 or counts["completed"] > 0 or counts["waiting"] < 100
    return success_response(request, {
        "status": "degraded" if degraded else "healthy",
        "running": running,
        "jobs": counts,
        "timestamp": utcnow().isoformat(),
    })
