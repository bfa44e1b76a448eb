"""
Notification endpoints: the caller's notifications, preferences, and a
manual trigger for the delivery cycle.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.dependencies.auth import MANAGER_ROLES, CurrentUser, get_current_user, require_role
from ecocomply.models.database_models import Notification, NotificationStatus
from ecocomply.models.schemas import NotificationOut, NotificationPreferencesUpdate
from ecocomply.services.notification_preferences import (
    list_user_preferences,
    update_user_preferences,
)
from ecocomply.services.notification_service import process_pending_notifications
from ecocomply.utils.api_response import (
    apply_cursor,
    clamp_limit,
    paginated_response,
    split_page,
    success_response,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_notifications(
    request: Request,
    status_filter: Optional[NotificationStatus] = Query(None, alias="status"),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    limit = clamp_limit(limit)
    stmt = select(Notification).where(
        Notification.company_id == user.company_id, Notification.user_id == user.id
    )
    if status_filter:
        stmt = stmt.where(Notification.status == status_filter)

    rows = (await db.execute(apply_cursor(stmt, Notification, cursor, limit))).scalars().all()
    page, has_more, next_cursor = split_page(rows, limit)
    return paginated_response(
        request,
        [NotificationOut.model_validate(n).model_dump() for n in page],
        limit,
        has_more,
        next_cursor,
    )


@router.get("/preferences")
async def get_preferences(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return success_response(
        request, {"preferences": await list_user_preferences(user.id, db)}
    )


@router.put("/preferences")
async def put_preferences(
    request: Request,
    body: NotificationPreferencesUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stored = await update_user_preferences(
        user.id, [p.model_dump() for p in body.preferences], db
    )
    await db.commit()
    return success_response(request, {"preferences": stored})


@router.post("/process")
async def process_notifications(
    request: Request,
    batch_size: int = Query(50, ge=1, le=500),
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Run one delivery pass over due notifications."""
    counts = await process_pending_notifications(db, batch_size=batch_size)
    return success_response(request, counts)
