"""
Inbound provider webhooks.
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.services.notification_service import apply_resend_event
from ecocomply.utils.api_response import ApiError, success_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/resend")
async def resend_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Apply Resend delivery events (a single event or a list of events)."""
    try:
        payload = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Invalid JSON payload")

    events = payload if isinstance(payload, list) else [payload]
    processed = 0
    for event in events:
        if isinstance(event, dict) and await apply_resend_event(event, db):
            processed += 1
    await db.commit()

    logger.info("Resend webhook: %d/%d event(s) applied", processed, len(events))
    return success_response(request, {"received": True, "processed": processed})
