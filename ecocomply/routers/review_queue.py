"""
Review queue endpoints.

GET    /              — list queue items (filters + cursor pagination)
GET    /{id}          — one item with its obligation summary
POST   /{id}/resolve  — confirm or reject one item
POST   /bulk          — confirm or reject many items, optionally similar ones too
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.dependencies.auth import ALL_ROLES, CurrentUser, client_ip, get_current_user, require_role
from ecocomply.models.database_models import Obligation, ReviewQueueItem, ReviewStatus
from ecocomply.models.schemas import BulkReviewRequest, ReviewActionRequest, ReviewQueueItemOut
from ecocomply.services.audit_log import record_audit
from ecocomply.utils.api_response import (
    ApiError,
    apply_cursor,
    clamp_limit,
    paginated_response,
    split_page,
    success_response,
)
from ecocomply.utils.helpers import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

PENDING = "PENDING"
CONFIRM = "CONFIRM"
REJECT = "REJECT"


class ReviewRefused(Exception):
    """An item that cannot be reviewed in its current state."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _company_item(item_id: str, company_id: str, db: AsyncSession) -> Optional[ReviewQueueItem]:
    result = await db.execute(
        select(ReviewQueueItem).where(
            ReviewQueueItem.id == item_id, ReviewQueueItem.company_id == company_id
        )
    )
    return result.scalar_one_or_none()


async def _obligation_summaries(
    obligation_ids: List[str], db: AsyncSession
) -> Dict[str, Dict[str, Any]]:
    if not obligation_ids:
        return {}
    rows = await db.execute(select(Obligation).where(Obligation.id.in_(obligation_ids)))
    return {
        o.id: {
            "id": o.id,
            "obligation_title": o.obligation_title,
            "original_text": o.original_text,
            "confidence_score": o.confidence_score,
            "status": o.status,
            "review_status": getattr(o.review_status, "value", o.review_status),
        }
        for o in rows.scalars().all()
    }


def _item_payload(item: ReviewQueueItem, obligation: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    data = ReviewQueueItemOut.model_validate(item).model_dump()
    data["obligation"] = obligation
    return data


def _require_reason(action: str, reason: Optional[str]) -> Optional[str]:
    reason = (reason or "").strip() or None
    if action == REJECT and reason is None:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "reason is required for REJECT action",
            details={"field": "reason"},
        )
    return reason


async def apply_review(
    item: ReviewQueueItem,
    action: str,
    reason: Optional[str],
    user_id: str,
    db: AsyncSession,
) -> None:
    """
    Resolve a PENDING item and carry the decision onto its obligation.

    CONFIRM activates the obligation; REJECT marks both the item and the
    obligation REJECTED.  Raises ReviewRefused when the item was already
    reviewed.
    """
    if item.review_status != PENDING:
        raise ReviewRefused(f"Item has already been reviewed (status: {item.review_status})")

    item.review_action = action
    item.review_status = "CONFIRMED" if action == CONFIRM else "REJECTED"
    item.review_notes = reason if action == REJECT else None
    item.reviewed_by = user_id
    item.reviewed_at = utcnow()

    if item.obligation_id:
        obligation = await db.get(Obligation, item.obligation_id)
        if obligation is not None and obligation.deleted_at is None:
            if action == CONFIRM:
                obligation.review_status = ReviewStatus.CONFIRMED
                obligation.status = "PENDING"
            else:
                obligation.review_status = ReviewStatus.REJECTED
                obligation.status = "REJECTED"
                obligation.review_notes = reason
            obligation.reviewed_by = user_id
            obligation.reviewed_at = item.reviewed_at


async def _similar_item_ids(
    company_id: str,
    review_type: str,
    confidence_threshold: float,
    exclude: List[str],
    db: AsyncSession,
) -> List[str]:
    rows = await db.execute(
        select(ReviewQueueItem.id, Obligation.confidence_score)
        .outerjoin(Obligation, Obligation.id == ReviewQueueItem.obligation_id)
        .where(
            ReviewQueueItem.company_id == company_id,
            ReviewQueueItem.review_type == review_type,
            ReviewQueueItem.review_status == PENDING,
        )
        .order_by(ReviewQueueItem.created_at.asc())
    )
    # Items without an obligation score count as fully confident
    return [
        item_id
        for item_id, confidence in rows.all()
        if item_id not in exclude
        and (confidence if confidence is not None else 1.0) >= confidence_threshold
    ]


# ---------------------------------------------------------------------------
# List / detail
# ---------------------------------------------------------------------------

@router.get("")
async def list_review_items(
    request: Request,
    review_status: Optional[str] = Query(None),
    review_type: Optional[str] = Query(None),
    site_id: Optional[str] = Query(None),
    document_id: Optional[str] = Query(None),
    is_blocking: Optional[bool] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    limit = clamp_limit(limit)
    stmt = select(ReviewQueueItem).where(ReviewQueueItem.company_id == user.company_id)
    if review_status:
        stmt = stmt.where(ReviewQueueItem.review_status == review_status)
    if review_type:
        stmt = stmt.where(ReviewQueueItem.review_type == review_type)
    if site_id:
        stmt = stmt.where(ReviewQueueItem.site_id == site_id)
    if document_id:
        stmt = stmt.where(ReviewQueueItem.document_id == document_id)
    if is_blocking is not None:
        stmt = stmt.where(ReviewQueueItem.is_blocking.is_(is_blocking))

    rows = (await db.execute(apply_cursor(stmt, ReviewQueueItem, cursor, limit))).scalars().all()
    page, has_more, next_cursor = split_page(rows, limit)
    obligations = await _obligation_summaries(
        [i.obligation_id for i in page if i.obligation_id], db
    )
    return paginated_response(
        request,
        [_item_payload(i, obligations.get(i.obligation_id)) for i in page],
        limit,
        has_more,
        next_cursor,
    )


@router.get("/{item_id}")
async def get_review_item(
    request: Request,
    item_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    item = await _company_item(item_id, user.company_id, db)
    if item is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Review item not found")
    obligations = await _obligation_summaries([item.obligation_id] if item.obligation_id else [], db)
    return success_response(request, _item_payload(item, obligations.get(item.obligation_id)))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

@router.post("/bulk")
async def bulk_review(
    request: Request,
    body: BulkReviewRequest,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """
    Confirm or reject many items at once.

    Each item is resolved independently; failures are reported per item.
    Responds 200 when everything succeeded, 207 on partial success and 422
    when no item could be processed.
    """
    reason = _require_reason(body.action, body.reason)
    bulk_action_id = str(uuid.uuid4())

    item_ids = list(dict.fromkeys(body.item_ids))
    if body.apply_to_similar is not None:
        item_ids += await _similar_item_ids(
            user.company_id,
            body.apply_to_similar.review_type,
            body.apply_to_similar.confidence_threshold,
            item_ids,
            db,
        )

    errors: List[Dict[str, str]] = []
    processed = 0
    for item_id in item_ids:
        item = await _company_item(item_id, user.company_id, db)
        if item is None:
            errors.append({"item_id": item_id, "error": "Item not found"})
            continue
        try:
            await apply_review(item, body.action, reason, user.id, db)
        except ReviewRefused as exc:
            errors.append({"item_id": item_id, "error": str(exc)})
            continue
        processed += 1

    await record_audit(
        db,
        entity_type="review_queue_items",
        entity_id=bulk_action_id,
        action=f"BULK_REVIEW_{body.action}",
        company_id=user.company_id,
        user_id=user.id,
        changes={
            "action": body.action,
            "total_items": len(item_ids),
            "processed": processed,
            "failed": len(errors),
            "item_ids": item_ids,
            "apply_to_similar": (
                body.apply_to_similar.model_dump() if body.apply_to_similar else None
            ),
            "reason": reason,
        },
        ip_address=client_ip(request),
    )
    await db.commit()

    logger.info(
        "Bulk review %s by %s: %d processed, %d failed",
        body.action,
        user.id,
        processed,
        len(errors),
    )
    result = {
        "bulk_action_id": bulk_action_id,
        "processed": processed,
        "failed": len(errors),
        "errors": errors,
    }
    if processed == 0:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "All items failed to process", details=result
        )
    code = status.HTTP_207_MULTI_STATUS if errors else status.HTTP_200_OK
    return success_response(request, result, code)


@router.post("/{item_id}/resolve")
async def resolve_review_item(
    request: Request,
    item_id: str,
    body: ReviewActionRequest,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    reason = _require_reason(body.action, body.reason)
    item = await _company_item(item_id, user.company_id, db)
    if item is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Review item not found")

    try:
        await apply_review(item, body.action, reason, user.id, db)
    except ReviewRefused as exc:
        raise ApiError(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))

    await record_audit(
        db,
        entity_type="review_queue_item",
        entity_id=item.id,
        action="REVIEW_CONFIRMED" if body.action == CONFIRM else "REVIEW_REJECTED",
        company_id=user.company_id,
        user_id=user.id,
        changes={"obligation_id": item.obligation_id, "reason": reason},
        ip_address=client_ip(request),
    )
    await db.commit()
    await db.refresh(item)
    obligations = await _obligation_summaries([item.obligation_id] if item.obligation_id else [], db)
    return success_response(request, _item_payload(item, obligations.get(item.obligation_id)))
