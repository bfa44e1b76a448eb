"""
Main FastAPI application for the EcoComply backend.
Handles CORS, request id / logging middleware, error envelopes, lifespan events,
and router registration.
"""
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from ecocomply.config import settings
from ecocomply.database import close_db, init_db
from ecocomply.routers import (
    analytics,
    auth,
    documents,
    evidence,
    health,
    notification_templates,
    notifications,
    obligations,
    packs,
    reports,
    review_queue,
    sites,
    webhooks,
)
from ecocomply.services.job_manager import job_manager
from ecocomply.services.rate_limiter import rate_limiter
from ecocomply.utils.api_response import ErrorCode, error_response

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_redis() -> bool:
    """Ping redis when configured.  Never raises; the rate limiter reports 503 on its own."""
    if not settings.REDIS_URL:
        logger.info("✓ Redis not configured, using in-process rate limiting")
        return False
    client = aioredis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
        logger.info("✓ Redis reachable")
        return True
    except Exception as exc:
        logger.error("✗ Redis unreachable (%s); rate-limited routes will return 503", exc)
        return False
    finally:
        await client.aclose()


def _check_llm() -> None:
    if settings.OPENAI_API_KEY:
        logger.info("✓ LLM configured: %s (%s)", settings.OPENAI_MODEL, settings.OPENAI_BASE_URL)
    else:
        logger.warning("⚠ OPENAI_API_KEY not set; document extraction will fail")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting EcoComply backend …")
    logger.info("=" * 60)

    # 1. Database (required; raises on failure)
    await _check_database()

    # 2. Redis and LLM (optional; log and continue)
    await _check_redis()
    _check_llm()

    # 3. Upload directory
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    logger.info("✓ Upload directory: %s", os.path.abspath(settings.UPLOAD_DIR))

    if not settings.BACKGROUND_JOBS_ENABLED:
        logger.warning("⚠ Background jobs disabled; extraction and pack generation will not run")

    logger.info("=" * 60)
    logger.info("  EcoComply backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield  # ← server is running

    logger.info("Shutting down EcoComply backend …")
    job_manager.reset()
    await rate_limiter.close()
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="EcoComply API",
    description=(
        "**EcoComply** — environmental compliance management.\n\n"
        "Upload permits and consents, extract obligations with an LLM, link "
        "evidence, and generate signed audit packs.\n\n"
        "Key endpoints:\n"
        "- `POST /api/v1/documents` — upload a permit document\n"
        "- `POST /api/v1/documents/{id}/extract` — extract obligations\n"
        "- `POST /api/v1/evidence` — upload evidence\n"
        "- `POST /api/v1/packs/generate` — generate an audit pack\n"
        "- `GET  /api/v1/packs/{id}/verify` — public pack verification\n"
    ),
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Process-Time"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Assign a request id, then log every request with method, path, status code,
    and elapsed time.  Attaches ``X-Request-Id`` and ``X-Process-Time`` headers.
    """
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id

    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling
    if request.url.path not in ("/api/health", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms) [%s]",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )

    response.headers["X-Request-Id"] = request_id
    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTPException / ApiError as the error envelope."""
    return error_response(
        request,
        exc.status_code,
        str(exc.detail),
        code=getattr(exc, "code", None),
        details=getattr(exc, "details", None),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        code=ErrorCode.VALIDATION_ERROR,
        details=exc.errors(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        code=ErrorCode.INTERNAL_ERROR,
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,                 prefix="/api/health",                    tags=["Health"])
app.include_router(health.v1_router,              prefix="/api/v1/health",                 tags=["Health"])
app.include_router(auth.router,                   prefix="/api/v1/auth",                   tags=["Auth"])
app.include_router(sites.router,                  prefix="/api/v1/sites",                  tags=["Sites"])
app.include_router(documents.router,              prefix="/api/v1/documents",              tags=["Documents"])
app.include_router(obligations.router,            prefix="/api/v1/obligations",            tags=["Obligations"])
app.include_router(evidence.router,               prefix="/api/v1/evidence",               tags=["Evidence"])
app.include_router(review_queue.router,           prefix="/api/v1/review-queue",           tags=["Review Queue"])
app.include_router(packs.router,                  prefix="/api/v1/packs",                  tags=["Packs"])
app.include_router(reports.router,                prefix="/api/v1/reports",                tags=["Reports"])
app.include_router(notifications.router,          prefix="/api/v1/notifications",          tags=["Notifications"])
app.include_router(notification_templates.router, prefix="/api/v1/notification-templates", tags=["Notification Templates"])
app.include_router(webhooks.router,               prefix="/api/v1/webhooks",               tags=["Webhooks"])
app.include_router(analytics.router,              prefix="/api/v1/analytics",              tags=["Analytics"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root — returns basic service info."""
    return {
        "name": "EcoComply API",
        "version": settings.APP_VERSION,
        "description": "Environmental Compliance Management Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "auth": "/api/v1/auth",
            "sites": "/api/v1/sites",
            "documents": "/api/v1/documents",
            "obligations": "/api/v1/obligations",
            "review_queue": "/api/v1/review-queue",
            "evidence": "/api/v1/evidence",
            "packs": "/api/v1/packs",
            "reports": "/api/v1/reports",
            "notifications": "/api/v1/notifications",
            "analytics": "/api/v1/analytics",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ecocomply.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
