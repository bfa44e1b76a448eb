"""
Evidence endpoints: upload, list, download, and linking to obligations.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.config import settings
from ecocomply.database import get_db
from ecocomply.dependencies.auth import ALL_ROLES, CurrentUser, client_ip, get_current_user, require_role
from ecocomply.models.database_models import (
    EvidenceItem,
    Obligation,
    ObligationEvidenceLink,
    SiteAssignment,
)
from ecocomply.models.schemas import EvidenceLinkOut, EvidenceLinkRequest, EvidenceOut
from ecocomply.routers.obligations import get_company_obligation
from ecocomply.services.audit_log import record_audit
from ecocomply.services.storage import EVIDENCE_BUCKET, get_storage
from ecocomply.utils.api_response import (
    ApiError,
    apply_cursor,
    clamp_limit,
    get_request_id,
    paginated_response,
    split_page,
    success_response,
)
from ecocomply.utils.helpers import compliance_period_for, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

_FILE_TYPES = {
    ".pdf": "PDF",
    ".jpg": "IMAGE",
    ".jpeg": "IMAGE",
    ".png": "IMAGE",
    ".gif": "IMAGE",
    ".webp": "IMAGE",
    ".csv": "CSV",
    ".xlsx": "XLSX",
    ".zip": "ZIP",
    ".doc": "DOCUMENT",
    ".docx": "DOCUMENT",
}


def evidence_file_type(filename: str) -> str:
    return _FILE_TYPES.get(Path(filename).suffix.lower(), "DOCUMENT")


def parse_obligation_ids(obligation_id: Optional[str], obligation_ids: Optional[str]) -> List[str]:
    """
    Accept ``obligation_id`` or ``obligation_ids`` (JSON array or
    comma-separated); returns unique ids in order.
    """
    ids: List[str] = []
    if obligation_ids:
        raw = obligation_ids.strip()
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                raise ApiError(
                    status.HTTP_422_UNPROCESSABLE_ENTITY,
                    "obligation_ids must be a JSON array or a comma-separated list",
                    details={"field": "obligation_ids"},
                )
            if not isinstance(parsed, list):
                raise ApiError(
                    status.HTTP_422_UNPROCESSABLE_ENTITY,
                    "obligation_ids must be a JSON array or a comma-separated list",
                    details={"field": "obligation_ids"},
                )
            ids.extend(str(v).strip() for v in parsed)
        else:
            ids.extend(part.strip() for part in raw.split(","))
    elif obligation_id:
        ids.append(obligation_id.strip())
    return list(dict.fromkeys(i for i in ids if i))


async def get_company_evidence(evidence_id: str, company_id: str, db: AsyncSession) -> EvidenceItem:
    result = await db.execute(
        select(EvidenceItem).where(
            EvidenceItem.id == evidence_id, EvidenceItem.company_id == company_id
        )
    )
    evidence = result.scalar_one_or_none()
    if evidence is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Evidence not found")
    return evidence


async def can_link_across_sites(evidence: EvidenceItem, obligation: Obligation, db: AsyncSession) -> bool:
    """True when the obligation's document is shared to the evidence's site."""
    result = await db.execute(
        select(SiteAssignment.id).where(
            SiteAssignment.site_id == evidence.site_id,
            SiteAssignment.document_id == obligation.document_id,
            SiteAssignment.obligations_shared.is_(True),
        )
    )
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# List / upload
# ---------------------------------------------------------------------------

@router.get("")
async def list_evidence(
    request: Request,
    site_id: Optional[str] = Query(None),
    evidence_type: Optional[str] = Query(None),
    obligation_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    limit = clamp_limit(limit)
    stmt = select(EvidenceItem).where(
        EvidenceItem.company_id == user.company_id, EvidenceItem.is_archived.is_(False)
    )
    if site_id:
        stmt = stmt.where(EvidenceItem.site_id == site_id)
    if evidence_type:
        stmt = stmt.where(EvidenceItem.evidence_type == evidence_type)
    if obligation_id:
        linked = select(ObligationEvidenceLink.evidence_id).where(
            ObligationEvidenceLink.obligation_id == obligation_id,
            ObligationEvidenceLink.unlinked_at.is_(None),
        )
        stmt = stmt.where(EvidenceItem.id.in_(linked))

    rows = (await db.execute(apply_cursor(stmt, EvidenceItem, cursor, limit))).scalars().all()
    page, has_more, next_cursor = split_page(rows, limit)
    return paginated_response(
        request,
        [EvidenceOut.model_validate(e).model_dump() for e in page],
        limit,
        has_more,
        next_cursor,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_evidence(
    request: Request,
    file: Optional[UploadFile] = File(None),
    obligation_id: Optional[str] = Form(None),
    obligation_ids: Optional[str] = Form(None),
    metadata: Optional[str] = Form(None),
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload an evidence file and link it to one or more obligations.

    - Max file size: 20 MB (MAX_EVIDENCE_SIZE)
    - All obligations must belong to the caller's company and one site
    - ``metadata`` may carry description, evidence_type, compliance_period
    """
    if file is None or not file.filename:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "File is required", details={"field": "file"}
        )

    ids = parse_obligation_ids(obligation_id, obligation_ids)
    if not ids:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "At least one obligation_id is required",
            details={"obligation_id": "obligation_id or obligation_ids is required"},
        )

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in settings.SUPPORTED_EVIDENCE_TYPES:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Unsupported file type '{file_ext}'. "
            f"Accepted: {', '.join(settings.SUPPORTED_EVIDENCE_TYPES)}",
            details={"field": "file"},
        )

    meta: Dict[str, Any] = {}
    if metadata:
        try:
            meta = json.loads(metadata)
        except json.JSONDecodeError:
            meta = None
        if not isinstance(meta, dict):
            raise ApiError(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                "metadata must be a JSON object",
                details={"field": "metadata"},
            )

    obligations = (
        await db.execute(
            select(Obligation).where(
                Obligation.id.in_(ids),
                Obligation.company_id == user.company_id,
                Obligation.deleted_at.is_(None),
            )
        )
    ).scalars().all()
    if len(obligations) != len(ids):
        raise ApiError(status.HTTP_404_NOT_FOUND, "One or more obligations not found")
    site_ids = {o.site_id for o in obligations}
    if len(site_ids) > 1:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "All obligations must belong to the same site",
            details={"obligation_ids": "Obligations must be from the same site"},
        )
    site_id = site_ids.pop()

    storage = get_storage()
    stored = await storage.save_upload(EVIDENCE_BUCKET, file, settings.MAX_EVIDENCE_SIZE)

    try:
        compliance_period = meta.get("compliance_period") or compliance_period_for(utcnow().date())
        evidence = EvidenceItem(
            company_id=user.company_id,
            site_id=site_id,
            file_name=file.filename,
            file_type=evidence_file_type(file.filename),
            file_size=stored.size,
            mime_type=file.content_type,
            storage_path=stored.path,
            file_hash=stored.sha256,
            description=meta.get("description"),
            evidence_type=meta.get("evidence_type"),
            compliance_period=compliance_period,
            validation_status="PENDING",
            is_archived=False,
            metadata_json=meta,
            uploaded_by=user.id,
        )
        db.add(evidence)
        await db.flush()

        links = []
        for oid in ids:
            link = ObligationEvidenceLink(
                obligation_id=oid,
                evidence_id=evidence.id,
                compliance_period=compliance_period,
                linked_by=user.id,
            )
            db.add(link)
            links.append(link)
        await db.flush()
        for link in links:
            await record_audit(
                db,
                entity_type="obligation_evidence_link",
                entity_id=link.id,
                action="EVIDENCE_LINKED",
                company_id=user.company_id,
                user_id=user.id,
                changes={"obligation_id": link.obligation_id, "evidence_id": evidence.id},
                ip_address=client_ip(request),
            )
        await db.commit()
        await db.refresh(evidence)

        logger.info(
            "Evidence %r stored as id=%s, linked to %d obligation(s)",
            file.filename,
            evidence.id,
            len(links),
        )
        data = EvidenceOut.model_validate(evidence).model_dump()
        data["links"] = [EvidenceLinkOut.model_validate(l).model_dump() for l in links]
        return success_response(request, data, status.HTTP_201_CREATED)

    except HTTPException:
        storage.remove(stored.path)
        raise
    except Exception as exc:
        logger.exception("Unexpected error storing evidence %r", file.filename)
        storage.remove(stored.path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error uploading evidence: {exc}",
        )


# ---------------------------------------------------------------------------
# Single item
# ---------------------------------------------------------------------------

@router.get("/{evidence_id}")
async def get_evidence(
    request: Request,
    evidence_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    evidence = await get_company_evidence(evidence_id, user.company_id, db)
    links = (
        await db.execute(
            select(ObligationEvidenceLink).where(
                ObligationEvidenceLink.evidence_id == evidence.id,
                ObligationEvidenceLink.unlinked_at.is_(None),
            )
        )
    ).scalars().all()
    data = EvidenceOut.model_validate(evidence).model_dump()
    data["links"] = [EvidenceLinkOut.model_validate(l).model_dump() for l in links]
    return success_response(request, data)


@router.get("/{evidence_id}/download")
async def download_evidence(
    request: Request,
    evidence_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    evidence = await get_company_evidence(evidence_id, user.company_id, db)
    storage = get_storage()
    if not storage.exists(evidence.storage_path):
        raise ApiError(status.HTTP_404_NOT_FOUND, "Evidence file not found in storage")
    return FileResponse(
        storage.resolve(evidence.storage_path),
        media_type=evidence.mime_type or "application/octet-stream",
        filename=evidence.file_name,
        headers={"X-Request-Id": get_request_id(request)},
    )


@router.post("/{evidence_id}/link", status_code=status.HTTP_201_CREATED)
async def link_evidence(
    request: Request,
    evidence_id: str,
    body: EvidenceLinkRequest,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    evidence = await get_company_evidence(evidence_id, user.company_id, db)
    obligation = await get_company_obligation(body.obligation_id, user.company_id, db)

    if evidence.site_id != obligation.site_id and not await can_link_across_sites(evidence, obligation, db):
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Evidence and obligation must belong to the same site",
            details={"obligation_id": body.obligation_id},
        )

    existing = (
        await db.execute(
            select(ObligationEvidenceLink.id).where(
                ObligationEvidenceLink.obligation_id == obligation.id,
                ObligationEvidenceLink.evidence_id == evidence.id,
                ObligationEvidenceLink.unlinked_at.is_(None),
            )
        )
    ).scalars().first()
    if existing is not None:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "Evidence is already linked to this obligation"
        )

    link = ObligationEvidenceLink(
        obligation_id=obligation.id,
        evidence_id=evidence.id,
        compliance_period=body.compliance_period
        or evidence.compliance_period
        or compliance_period_for(utcnow().date()),
        linked_by=user.id,
        notes=body.notes,
    )
    db.add(link)
    await db.flush()
    await record_audit(
        db,
        entity_type="obligation_evidence_link",
        entity_id=link.id,
        action="EVIDENCE_LINKED",
        company_id=user.company_id,
        user_id=user.id,
        changes={"obligation_id": obligation.id, "evidence_id": evidence.id},
        ip_address=client_ip(request),
    )
    await db.commit()
    await db.refresh(link)
    return success_response(
        request, EvidenceLinkOut.model_validate(link).model_dump(), status.HTTP_201_CREATED
    )
