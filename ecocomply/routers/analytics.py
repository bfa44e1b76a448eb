"""
Extraction cost analytics and rule-library candidate review.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import get_db
from ecocomply.dependencies.auth import MANAGER_ROLES, CurrentUser, client_ip, require_role
from ecocomply.models.database_models import ExtractionLog, PatternCandidate
from ecocomply.models.schemas import PatternCandidateOut, PatternCandidateUpdate
from ecocomply.services.audit_log import record_audit
from ecocomply.services.cost_calculator import calculate_rule_library_savings
from ecocomply.utils.helpers import ensure_utc, utcnow
from ecocomply.utils.api_response import ApiError, success_response

logger = logging.getLogger(__name__)

router = APIRouter()

# Approximate LLM spend per extracted obligation, used as the no-library baseline
LLM_COST_PER_OBLIGATION = 0.002


@router.get("/cost-savings")
async def cost_savings(
    request: Request,
    period_days: int = Query(30, ge=1, le=365),
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """
    Extraction spend and rule-library savings over the last *period_days*.

    Returns ``overview`` totals, ``cost_savings`` estimates and a daily
    ``trend`` series.
    """
    end = utcnow()
    start = end - timedelta(days=period_days)

    logs = (
        await db.execute(
            select(ExtractionLog)
            .where(ExtractionLog.company_id == user.company_id, ExtractionLog.created_at >= start)
            .order_by(ExtractionLog.created_at.asc())
        )
    ).scalars().all()

    documents = {log.document_id for log in logs}
    obligations = sum(log.obligations_extracted for log in logs)
    input_tokens = sum(log.input_tokens for log in logs)
    output_tokens = sum(log.output_tokens for log in logs)
    total_cost = sum(log.estimated_cost for log in logs)
    library_hits = sum(log.rule_library_hits for log in logs)

    daily: Dict[str, Dict[str, Any]] = defaultdict(
        lambda: {"documents": set(), "obligations": 0, "cost": 0.0}
    )
    for log in logs:
        day = ensure_utc(log.created_at).date().isoformat()
        daily[day]["documents"].add(log.document_id)
        daily[day]["obligations"] += log.obligations_extracted
        daily[day]["cost"] += log.estimated_cost

    pending_patterns = (
        await db.execute(
            select(PatternCandidate.id).where(
                PatternCandidate.company_id == user.company_id,
                PatternCandidate.status == "PENDING_REVIEW",
            )
        )
    ).scalars().all()

    baseline = obligations * LLM_COST_PER_OBLIGATION
    return success_response(request, {
        "period": {"days": period_days, "start": start, "end": end},
        "overview": {
            "documents_processed": len(documents),
            "obligations_extracted": obligations,
            "total_input_tokens": input_tokens,
            "total_output_tokens": output_tokens,
            "total_cost": round(total_cost, 6),
            "avg_cost_per_document": round(total_cost / len(documents), 6) if documents else 0.0,
        },
        "cost_savings": {
            "rule_library_hits": library_hits,
            "estimated_savings": round(calculate_rule_library_savings(library_hits), 6),
            "baseline_llm_cost": round(baseline, 6),
            "pending_pattern_candidates": len(pending_patterns),
        },
        "trend": [
            {
                "date": day,
                "documents": len(values["documents"]),
                "obligations": values["obligations"],
                "cost": round(values["cost"], 6),
            }
            for day, values in sorted(daily.items())
        ],
    })


# ---------------------------------------------------------------------------
# Rule library candidates
# ---------------------------------------------------------------------------

@router.get("/pattern-candidates")
async def list_pattern_candidates(
    request: Request,
    status_filter: Optional[str] = Query(None, alias="status"),
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(PatternCandidate).where(PatternCandidate.company_id == user.company_id)
    if status_filter:
        stmt = stmt.where(PatternCandidate.status == status_filter)
    rows = await db.execute(
        stmt.order_by(PatternCandidate.sample_count.desc(), PatternCandidate.created_at.desc())
    )
    return success_response(
        request, [PatternCandidateOut.model_validate(r).model_dump() for r in rows.scalars().all()]
    )


@router.put("/pattern-candidates/{candidate_id}")
async def review_pattern_candidate(
    request: Request,
    candidate_id: str,
    body: PatternCandidateUpdate,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Approve a candidate into the company's rule library, or reject it."""
    candidate = (
        await db.execute(
            select(PatternCandidate).where(
                PatternCandidate.id == candidate_id,
                PatternCandidate.company_id == user.company_id,
            )
        )
    ).scalar_one_or_none()
    if candidate is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Pattern candidate not found")
    if body.category is not None:
        candidate.category = body.category
    if body.status == "APPROVED":
        if candidate.category is None:
            raise ApiError(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                "A category is required to approve a pattern",
                details={"field": "category"},
            )
        try:
            re.compile(candidate.pattern_text)
        except re.error as exc:
            raise ApiError(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                f"Pattern is not a valid regular expression: {exc}",
            )
    previous = candidate.status
    candidate.status = body.status
    await record_audit(
        db,
        entity_type="pattern_candidate",
        entity_id=candidate.id,
        action=f"PATTERN_{body.status}",
        company_id=user.company_id,
        user_id=user.id,
        changes={"status": {"old": previous, "new": body.status}},
        ip_address=client_ip(request),
    )
    await db.commit()
    await db.refresh(candidate)
    logger.info("Pattern candidate %s %s by %s", candidate.id, body.status, user.id)
    return success_response(request, PatternCandidateOut.model_validate(candidate).model_dump())
