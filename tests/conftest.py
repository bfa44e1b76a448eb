"""
Shared fixtures for EcoComply backend integration tests.

Runs against a throwaway SQLite database (aiosqlite) so no services are
needed.  Each test function gets fresh tables: they are created before the
test and dropped afterwards.  Background jobs and rate limiting are disabled.
"""
from __future__ import annotations

import os
import tempfile
from typing import AsyncGenerator, Dict

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override settings *before* any app module is imported, so that
# settings and the global engine point at the test database.
_TMP_DIR = tempfile.mkdtemp(prefix="ecocomply-tests-")
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test_ecocomply.db')}",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["BACKGROUND_JOBS_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""

from ecocomply.database import Base, get_db  # noqa: E402
from ecocomply.main import app  # noqa: E402
from ecocomply.models.database_models import Company, Site, User, UserRole  # noqa: E402
from ecocomply.services.job_manager import job_manager  # noqa: E402
from tests.factories import bearer, make_user  # noqa: E402


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a DB session for each test.  Tables are created first and dropped
    after the test so each test starts with a clean slate.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
    job_manager.reset()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB dependency
    overridden to use the per-test session.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def company(db_session: AsyncSession) -> Company:
    company = Company(name="Acme Water Ltd")
    db_session.add(company)
    await db_session.commit()
    await db_session.refresh(company)
    return company


@pytest_asyncio.fixture
async def site(db_session: AsyncSession, company: Company) -> Site:
    site = Site(company_id=company.id, name="Riverside Works", regulator="EA", postcode="AB1 2CD")
    db_session.add(site)
    await db_session.commit()
    await db_session.refresh(site)
    return site


@pytest_asyncio.fixture
async def owner(db_session: AsyncSession, company: Company) -> User:
    return await make_user(db_session, company, "owner@acmewater.co.uk", UserRole.OWNER, "Olivia Owner")


@pytest_asyncio.fixture
async def staff(db_session: AsyncSession, company: Company) -> User:
    return await make_user(db_session, company, "staff@acmewater.co.uk", UserRole.STAFF, "Sam Staff")


@pytest_asyncio.fixture
async def owner_headers(owner: User) -> Dict[str, str]:
    return bearer(owner)


@pytest_asyncio.fixture
async def staff_headers(staff: User) -> Dict[str, str]:
    return bearer(staff)


@pytest_asyncio.fixture
async def other_headers(db_session: AsyncSession) -> Dict[str, str]:
    """Owner of a second, unrelated company."""
    other = Company(name="Other Co")
    db_session.add(other)
    await db_session.commit()
    await db_session.refresh(other)
    user = await make_user(db_session, other, "owner@otherco.co.uk", UserRole.OWNER)
    return bearer(user)
