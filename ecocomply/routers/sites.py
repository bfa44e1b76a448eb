"""
Site endpoints.  Reads are open to any user of the company; writes need OWNER/ADMIN.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.dependencies.auth import MANAGER_ROLES, CurrentUser, get_current_user, require_role
from ecocomply.models.database_models import Site
from ecocomply.models.schemas import SiteCreate, SiteOut, SiteUpdate
from ecocomply.utils.api_response import (
    ApiError,
    apply_cursor,
    clamp_limit,
    paginated_response,
    split_page,
    success_response,
)

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_company_site(site_id: str, company_id: str, db: AsyncSession) -> Site:
    """Load a site of *company_id* or raise 404."""
    result = await db.execute(
        select(Site).where(Site.id == site_id, Site.company_id == company_id)
    )
    site = result.scalar_one_or_none()
    if site is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Site not found")
    return site


@router.get("")
async def list_sites(
    request: Request,
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    limit = clamp_limit(limit)
    stmt = apply_cursor(select(Site).where(Site.company_id == user.company_id), Site, cursor, limit)
    rows = (await db.execute(stmt)).scalars().all()
    page, has_more, next_cursor = split_page(rows, limit)
    return paginated_response(
        request,
        [SiteOut.model_validate(s).model_dump() for s in page],
        limit,
        has_more,
        next_cursor,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_site(
    request: Request,
    body: SiteCreate,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        site = Site(company_id=user.company_id, **body.model_dump())
        db.add(site)
        await db.commit()
        await db.refresh(site)
        logger.info("Site %s created by %s", site.id, user.id)
        return success_response(request, SiteOut.model_validate(site).model_dump(), status.HTTP_201_CREATED)
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Error creating site")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error creating site: {exc}",
        )


@router.get("/{site_id}")
async def get_site(
    request: Request,
    site_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    site = await get_company_site(site_id, user.company_id, db)
    return success_response(request, SiteOut.model_validate(site).model_dump())


@router.put("/{site_id}")
async def update_site(
    request: Request,
    site_id: str,
    body: SiteUpdate,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    site = await get_company_site(site_id, user.company_id, db)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(site, field, value)
    await db.commit()
    await db.refresh(site)
    return success_response(request, SiteOut.model_validate(site).model_dump())
