"""
Obligation endpoints.

GET    /                                   — list with filters + evidence counts
GET    /{id}                               — obligation + evidence, schedules, deadlines
PUT    /{id}                               — edit (versioned, audited)
PUT    /{id}/mark-na                       — mark not applicable
GET    /{id}/evidence                      — active evidence links
DELETE /{id}/evidence/{evidence_id}/unlink — soft-unlink evidence
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.dependencies.auth import ALL_ROLES, CurrentUser, client_ip, get_current_user, require_role
from ecocomply.models.database_models import (
    Deadline,
    EvidenceItem,
    Obligation,
    ObligationCategory,
    ObligationEvidenceLink,
    ReviewStatus,
    Schedule,
)
from ecocomply.models.schemas import (
    DeadlineOut,
    EvidenceLinkOut,
    EvidenceOut,
    MarkNotApplicableRequest,
    ObligationOut,
    ObligationUpdate,
    ScheduleOut,
)
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

NOT_APPLICABLE = "NOT_APPLICABLE"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def get_company_obligation(obligation_id: str, company_id: str, db: AsyncSession) -> Obligation:
    """Load a non-deleted obligation of *company_id* or raise 404."""
    result = await db.execute(
        select(Obligation).where(
            Obligation.id == obligation_id,
            Obligation.company_id == company_id,
            Obligation.deleted_at.is_(None),
        )
    )
    obligation = result.scalar_one_or_none()
    if obligation is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Obligation not found")
    return obligation


def _active_links():
    """Active links whose evidence is not archived."""
    return (
        select(ObligationEvidenceLink, EvidenceItem)
        .join(EvidenceItem, EvidenceItem.id == ObligationEvidenceLink.evidence_id)
        .where(
            ObligationEvidenceLink.unlinked_at.is_(None),
            EvidenceItem.is_archived.is_(False),
        )
    )


async def _evidence_counts(obligation_ids: List[str], db: AsyncSession) -> Dict[str, int]:
    if not obligation_ids:
        return {}
    rows = await db.execute(
        select(ObligationEvidenceLink.obligation_id, func.count(ObligationEvidenceLink.id))
        .join(EvidenceItem, EvidenceItem.id == ObligationEvidenceLink.evidence_id)
        .where(
            ObligationEvidenceLink.obligation_id.in_(obligation_ids),
            ObligationEvidenceLink.unlinked_at.is_(None),
            EvidenceItem.is_archived.is_(False),
        )
        .group_by(ObligationEvidenceLink.obligation_id)
    )
    return {obligation_id: count for obligation_id, count in rows.all()}


async def _linked_evidence(obligation_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    rows = await db.execute(
        _active_links()
        .where(ObligationEvidenceLink.obligation_id == obligation_id)
        .order_by(ObligationEvidenceLink.created_at.desc())
    )
    linked = []
    for link, evidence in rows.all():
        item = EvidenceOut.model_validate(evidence).model_dump()
        item["link"] = EvidenceLinkOut.model_validate(link).model_dump()
        linked.append(item)
    return linked


def _obligation_payload(obligation: Obligation, evidence_count: int = 0) -> Dict[str, Any]:
    data = ObligationOut.model_validate(obligation).model_dump()
    data["evidence_count"] = evidence_count
    return data


def _comparable(value: Any) -> Any:
    value = getattr(value, "value", value)
    if isinstance(value, date):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# List / detail
# ---------------------------------------------------------------------------

@router.get("")
async def list_obligations(
    request: Request,
    site_id: Optional[str] = Query(None),
    document_id: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    review_status: Optional[ReviewStatus] = Query(None),
    category: Optional[ObligationCategory] = Query(None),
    is_subjective: Optional[bool] = Query(None),
    deadline_from: Optional[date] = Query(None, alias="deadline_date[gte]"),
    deadline_to: Optional[date] = Query(None, alias="deadline_date[lte]"),
    assigned_to: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    limit = clamp_limit(limit)
    stmt = select(Obligation).where(
        Obligation.company_id == user.company_id, Obligation.deleted_at.is_(None)
    )
    if site_id:
        stmt = stmt.where(Obligation.site_id == site_id)
    if document_id:
        stmt = stmt.where(Obligation.document_id == document_id)
    if status_filter:
        stmt = stmt.where(Obligation.status == status_filter)
    if review_status:
        stmt = stmt.where(Obligation.review_status == review_status)
    if category:
        stmt = stmt.where(Obligation.category == category)
    if is_subjective is not None:
        stmt = stmt.where(Obligation.is_subjective.is_(is_subjective))
    if deadline_from:
        stmt = stmt.where(Obligation.deadline_date >= deadline_from)
    if deadline_to:
        stmt = stmt.where(Obligation.deadline_date <= deadline_to)
    if assigned_to:
        stmt = stmt.where(Obligation.assigned_to == assigned_to)

    rows = (await db.execute(apply_cursor(stmt, Obligation, cursor, limit))).scalars().all()
    page, has_more, next_cursor = split_page(rows, limit)
    counts = await _evidence_counts([o.id for o in page], db)
    return paginated_response(
        request,
        [_obligation_payload(o, counts.get(o.id, 0)) for o in page],
        limit,
        has_more,
        next_cursor,
    )


@router.get("/{obligation_id}")
async def get_obligation(
    request: Request,
    obligation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    obligation = await get_company_obligation(obligation_id, user.company_id, db)
    linked = await _linked_evidence(obligation.id, db)

    schedules = (
        await db.execute(select(Schedule).where(Schedule.obligation_id == obligation.id))
    ).scalars().all()
    deadlines = (
        await db.execute(
            select(Deadline)
            .where(Deadline.obligation_id == obligation.id)
            .order_by(Deadline.due_date.asc())
        )
    ).scalars().all()

    data = _obligation_payload(obligation, len(linked))
    data["linked_evidence"] = linked
    data["schedules"] = [ScheduleOut.model_validate(s).model_dump() for s in schedules]
    data["deadlines"] = [DeadlineOut.model_validate(d).model_dump() for d in deadlines]
    return success_response(request, data)


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------

@router.put("/{obligation_id}")
async def update_obligation(
    request: Request,
    obligation_id: str,
    body: ObligationUpdate,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """
    Edit an obligation.  Each edit bumps ``version_number``, appends the
    field-level diff to ``version_history``, and marks the obligation EDITED.
    """
    obligation = await get_company_obligation(obligation_id, user.company_id, db)
    updates = body.model_dump(exclude_unset=True)

    if "document_id" in updates:
        if updates["document_id"] != obligation.document_id:
            raise ApiError(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                "document_id cannot be changed",
                details={"field": "document_id"},
            )
        updates.pop("document_id")
    if "obligation_title" in updates and updates["obligation_title"] is None:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Title cannot be empty",
            details={"field": "obligation_title"},
        )
    if "category" in updates and updates["category"] is None:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Category cannot be empty",
            details={"field": "category"},
        )

    changes: Dict[str, Dict[str, Any]] = {}
    for field, new_value in updates.items():
        old_value = getattr(obligation, field)
        if _comparable(old_value) != _comparable(new_value):
            changes[field] = {"old": _comparable(old_value), "new": _comparable(new_value)}
            setattr(obligation, field, new_value)

    if changes:
        now = utcnow()
        obligation.version_number = (obligation.version_number or 1) + 1
        obligation.version_history = list(obligation.version_history or []) + [{
            "version_number": obligation.version_number,
            "updated_at": now.isoformat(),
            "updated_by": user.id,
            "changes": changes,
        }]
        obligation.review_status = ReviewStatus.EDITED
        await record_audit(
            db,
            entity_type="obligation",
            entity_id=obligation.id,
            action="OBLIGATION_UPDATED",
            company_id=user.company_id,
            user_id=user.id,
            changes=changes,
            ip_address=client_ip(request),
        )

    await db.commit()
    await db.refresh(obligation)
    counts = await _evidence_counts([obligation.id], db)
    return success_response(request, _obligation_payload(obligation, counts.get(obligation.id, 0)))


@router.put("/{obligation_id}/mark-na")
async def mark_not_applicable(
    request: Request,
    obligation_id: str,
    body: MarkNotApplicableRequest,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    reason = (body.reason or "").strip()
    if not reason:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "A reason is required to mark an obligation not applicable",
            details={"field": "reason"},
        )

    obligation = await get_company_obligation(obligation_id, user.company_id, db)
    previous = {
        "status": obligation.status,
        "review_status": _comparable(obligation.review_status),
    }
    obligation.status = NOT_APPLICABLE
    obligation.review_status = ReviewStatus.NOT_APPLICABLE
    obligation.review_notes = reason
    obligation.reviewed_by = user.id
    obligation.reviewed_at = utcnow()

    await record_audit(
        db,
        entity_type="obligation",
        entity_id=obligation.id,
        action="MARK_NOT_APPLICABLE",
        company_id=user.company_id,
        user_id=user.id,
        changes={"before": previous, "after": {"status": NOT_APPLICABLE, "reason": reason}},
        ip_address=client_ip(request),
    )
    await db.commit()
    await db.refresh(obligation)
    return success_response(request, _obligation_payload(obligation))


# ---------------------------------------------------------------------------
# Evidence links
# ---------------------------------------------------------------------------

@router.get("/{obligation_id}/evidence")
async def list_obligation_evidence(
    request: Request,
    obligation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    obligation = await get_company_obligation(obligation_id, user.company_id, db)
    return success_response(request, await _linked_evidence(obligation.id, db))


@router.delete("/{obligation_id}/evidence/{evidence_id}/unlink")
async def unlink_evidence(
    request: Request,
    obligation_id: str,
    evidence_id: str,
    reason: Optional[str] = Query(None),
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    obligation = await get_company_obligation(obligation_id, user.company_id, db)
    link = (
        await db.execute(
            select(ObligationEvidenceLink).where(
                ObligationEvidenceLink.obligation_id == obligation.id,
                ObligationEvidenceLink.evidence_id == evidence_id,
                ObligationEvidenceLink.unlinked_at.is_(None),
            )
        )
    ).scalars().first()
    if link is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Evidence link not found")

    link.unlinked_at = utcnow()
    link.unlinked_by = user.id
    link.unlink_reason = reason

    await record_audit(
        db,
        entity_type="obligation_evidence_link",
        entity_id=link.id,
        action="EVIDENCE_UNLINKED",
        company_id=user.company_id,
        user_id=user.id,
        changes={"obligation_id": obligation.id, "evidence_id": evidence_id, "reason": reason},
        ip_address=client_ip(request),
    )
    await db.commit()
    await db.refresh(link)
    return success_response(request, EvidenceLinkOut.model_validate(link).model_dump())
