"""
Versioned notification template endpoints (OWNER/ADMIN only).
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.dependencies.auth import MANAGER_ROLES, CurrentUser, require_role
from ecocomply.models.schemas import (
    NotificationTemplateOut,
    TemplateRollbackRequest,
    TemplateVersionCreate,
)
from ecocomply.services.template_versioning import (
    create_template_version,
    get_active_template,
    get_template_versions,
    rollback_template,
)
from ecocomply.utils.api_response import ApiError, success_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{code}")
async def get_template(
    request: Request,
    code: str,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    template = await get_active_template(code, db)
    if template is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, f"No active template for {code}")
    return success_response(request, NotificationTemplateOut.model_validate(template).model_dump())


@router.get("/{code}/versions")
async def list_versions(
    request: Request,
    code: str,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    versions = await get_template_versions(code, db)
    return success_response(
        request, [NotificationTemplateOut.model_validate(t).model_dump() for t in versions]
    )


@router.post("/{code}/versions", status_code=status.HTTP_201_CREATED)
async def create_version(
    request: Request,
    code: str,
    body: TemplateVersionCreate,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    template = await create_template_version(code, body.model_dump(), user.id, db)
    await db.commit()
    await db.refresh(template)
    return success_response(
        request,
        NotificationTemplateOut.model_validate(template).model_dump(),
        status.HTTP_201_CREATED,
    )


@router.post("/{code}/rollback")
async def rollback(
    request: Request,
    code: str,
    body: TemplateRollbackRequest,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    try:
        template = await rollback_template(code, body.version, db)
    except LookupError as exc:
        raise ApiError(status.HTTP_404_NOT_FOUND, str(exc))
    await db.commit()
    await db.refresh(template)
    return success_response(request, NotificationTemplateOut.model_validate(template).model_dump())
