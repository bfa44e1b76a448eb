"""
Document upload and management endpoints.

GET    /                         — list documents with obligation counts
POST   /                         — multipart upload; queues extraction
GET    /{id}                     — document + obligation count
PUT    /{id}                     — edit title / reference / status / metadata
DELETE /{id}                     — soft delete
GET    /{id}/download            — original file
POST   /{id}/extract             — (re)run extraction in the background
GET    /{id}/extraction-status   — status + progress estimate
GET    /{id}/extraction-results  — obligations + latest extraction log
GET    /{id}/obligations         — obligations of the document
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.config import settings
from ecocomply.database import get_db
from ecocomply.dependencies.auth import (
    ALL_ROLES,
    MANAGER_ROLES,
    CurrentUser,
    get_current_user,
    require_role,
)
from ecocomply.models.database_models import (
    Document,
    DocumentType,
    ExtractionLog,
    ExtractionStatus,
    Obligation,
)
from ecocomply.models.schemas import DocumentOut, DocumentUpdate, ObligationOut
from ecocomply.routers.sites import get_company_site
from ecocomply.services.extraction_pipeline import EXTRACTION_JOB, run_document_extraction
from ecocomply.services.job_manager import job_manager
from ecocomply.services.storage import DOCUMENTS_BUCKET, get_storage
from ecocomply.utils.api_response import (
    ApiError,
    apply_cursor,
    clamp_limit,
    get_request_id,
    paginated_response,
    split_page,
    success_response,
)
from ecocomply.utils.helpers import ensure_utc, strip_extension, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

# API document types ↔ stored document types
API_TO_STORED_TYPE: Dict[str, DocumentType] = {
    "PERMIT": DocumentType.ENVIRONMENTAL_PERMIT,
    "CONSENT": DocumentType.TRADE_EFFLUENT_CONSENT,
    "MCPD_REGISTRATION": DocumentType.MCPD_REGISTRATION,
}
STORED_TO_API_TYPE: Dict[str, str] = {v.value: k for k, v in API_TO_STORED_TYPE.items()}

_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _stored_type(api_type: str) -> DocumentType:
    stored = API_TO_STORED_TYPE.get((api_type or "").upper())
    if stored is None:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Invalid document_type. Must be one of: {', '.join(API_TO_STORED_TYPE)}",
            details={"field": "document_type"},
        )
    return stored


def document_payload(document: Document, obligation_count: int = 0) -> Dict[str, Any]:
    data = DocumentOut.model_validate(document).model_dump()
    stored = getattr(document.document_type, "value", document.document_type)
    data["document_type"] = STORED_TO_API_TYPE.get(stored, stored)
    data["obligation_count"] = obligation_count
    data["file_url"] = f"/api/v1/documents/{document.id}/download"
    return data


async def get_company_document(document_id: str, company_id: str, db: AsyncSession) -> Document:
    """Load a non-deleted document of *company_id* or raise 404."""
    result = await db.execute(
        select(Document).where(
            Document.id == document_id,
            Document.company_id == company_id,
            Document.deleted_at.is_(None),
        )
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Document not found")
    return document


async def _obligation_counts(document_ids: List[str], db: AsyncSession) -> Dict[str, int]:
    if not document_ids:
        return {}
    rows = await db.execute(
        select(Obligation.document_id, func.count(Obligation.id))
        .where(Obligation.document_id.in_(document_ids), Obligation.deleted_at.is_(None))
        .group_by(Obligation.document_id)
    )
    return {doc_id: count for doc_id, count in rows.all()}


def _parse_metadata(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "metadata must be a JSON object",
            details={"field": "metadata"},
        )
    if not isinstance(value, dict):
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "metadata must be a JSON object",
            details={"field": "metadata"},
        )
    return value


def extraction_progress(
    extraction_status: str,
    elapsed_seconds: float,
    has_text: bool,
    obligation_count: int,
    job_running: bool,
) -> int:
    """
    Rough 0-100 progress for the UI.

    PROCESSING moves through setup (10%), parsing (10-40%) and extraction
    (40-90%); documents that look stuck (>5 min, no running job) cap at 15.
    """
    if extraction_status == ExtractionStatus.COMPLETED.value:
        return 100
    if extraction_status != ExtractionStatus.PROCESSING.value:
        return 0

    if elapsed_seconds < 5:
        progress = 10
    elif not has_text:
        progress = max(10, min(40, 10 + int((elapsed_seconds - 5) / 25 * 30)))
    else:
        extraction_elapsed = max(0.0, elapsed_seconds - 30)
        progress = max(40, min(90, 40 + int(extraction_elapsed / 90 * 50)))
        if obligation_count > 0:
            progress = max(progress, min(90, 40 + int(min(20, obligation_count * 1.5))))

    if obligation_count >= 10:
        progress = max(progress, 85)
    if obligation_count >= 20:
        progress = max(progress, 95)

    if elapsed_seconds > 300 and not job_running and progress > 15:
        progress = 15
    return progress


def _queue_extraction(document_id: str) -> None:
    job_manager.enqueue(
        EXTRACTION_JOB, document_id, lambda: run_document_extraction(document_id)
    )


# ---------------------------------------------------------------------------
# List / upload
# ---------------------------------------------------------------------------

@router.get("")
async def list_documents(
    request: Request,
    site_id: Optional[str] = Query(None),
    document_type: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    extraction_status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    limit = clamp_limit(limit)
    stmt = select(Document).where(
        Document.company_id == user.company_id, Document.deleted_at.is_(None)
    )
    if site_id:
        stmt = stmt.where(Document.site_id == site_id)
    if document_type:
        stmt = stmt.where(Document.document_type == _stored_type(document_type))
    if status_filter:
        stmt = stmt.where(Document.status == status_filter)
    if extraction_status:
        try:
            stmt = stmt.where(Document.extraction_status == ExtractionStatus(extraction_status))
        except ValueError:
            raise ApiError(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                f"Invalid extraction_status: {extraction_status}",
            )

    rows = (await db.execute(apply_cursor(stmt, Document, cursor, limit))).scalars().all()
    page, has_more, next_cursor = split_page(rows, limit)
    counts = await _obligation_counts([d.id for d in page], db)
    return paginated_response(
        request,
        [document_payload(d, counts.get(d.id, 0)) for d in page],
        limit,
        has_more,
        next_cursor,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_document(
    request: Request,
    file: Optional[UploadFile] = File(None),
    site_id: Optional[str] = Form(None),
    document_type: Optional[str] = Form(None),
    metadata: Optional[str] = Form(None),
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """
    Upload a permit, consent or MCPD registration.

    - Max file size: 50 MB (MAX_DOCUMENT_SIZE)
    - Accepted: .pdf, .doc, .docx
    - Extraction is queued immediately when background jobs are enabled
    """
    if file is None or not file.filename:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "File is required", details={"field": "file"}
        )
    if not site_id:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "site_id is required", details={"field": "site_id"}
        )
    stored_type = _stored_type(document_type or "")

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in settings.SUPPORTED_DOCUMENT_TYPES:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Unsupported file type '{file_ext}'. "
            f"Accepted: {', '.join(settings.SUPPORTED_DOCUMENT_TYPES)}",
            details={"field": "file"},
        )
    extra_metadata = _parse_metadata(metadata)
    await get_company_site(site_id, user.company_id, db)

    storage = get_storage()
    stored = await storage.save_upload(DOCUMENTS_BUCKET, file, settings.MAX_DOCUMENT_SIZE)

    try:
        document = Document(
            company_id=user.company_id,
            site_id=site_id,
            document_type=stored_type,
            title=strip_extension(file.filename)[:500] or file.filename,
            original_filename=file.filename,
            storage_path=stored.path,
            file_size_bytes=stored.size,
            mime_type=file.content_type or _MIME_TYPES.get(file_ext),
            status="ACTIVE",
            extraction_status=ExtractionStatus.PENDING,
            metadata_json={**extra_metadata, "file_hash": stored.sha256},
            uploaded_by=user.id,
        )
        db.add(document)
        await db.flush()

        if settings.BACKGROUND_JOBS_ENABLED:
            document.extraction_status = ExtractionStatus.PROCESSING
        await db.commit()
        await db.refresh(document)

        if settings.BACKGROUND_JOBS_ENABLED:
            _queue_extraction(document.id)

        logger.info(
            "Document %r stored as id=%s (%s bytes)", file.filename, document.id, f"{stored.size:,}"
        )
        return success_response(request, document_payload(document), status.HTTP_201_CREATED)

    except HTTPException:
        storage.remove(stored.path)
        raise
    except Exception as exc:
        logger.exception("Unexpected error storing %r", file.filename)
        storage.remove(stored.path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error processing document: {exc}",
        )


# ---------------------------------------------------------------------------
# Single document
# ---------------------------------------------------------------------------

@router.get("/{document_id}")
async def get_document(
    request: Request,
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    document = await get_company_document(document_id, user.company_id, db)
    counts = await _obligation_counts([document.id], db)
    return success_response(request, document_payload(document, counts.get(document.id, 0)))


@router.put("/{document_id}")
async def update_document(
    request: Request,
    document_id: str,
    body: DocumentUpdate,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    document = await get_company_document(document_id, user.company_id, db)
    updates = body.model_dump(exclude_unset=True)

    if "title" in updates and updates["title"] is not None:
        document.title = updates["title"]
    if "reference_number" in updates:
        document.reference_number = updates["reference_number"]
    if "status" in updates and updates["status"] is not None:
        document.status = updates["status"]
    if updates.get("metadata"):
        document.metadata_json = {**(document.metadata_json or {}), **updates["metadata"]}

    await db.commit()
    await db.refresh(document)
    counts = await _obligation_counts([document.id], db)
    return success_response(request, document_payload(document, counts.get(document.id, 0)))


@router.delete("/{document_id}")
async def delete_document(
    request: Request,
    document_id: str,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    document = await get_company_document(document_id, user.company_id, db)
    document.deleted_at = utcnow()
    await db.commit()
    logger.info("Document %s soft-deleted by %s", document_id, user.id)
    return success_response(request, {"id": document_id, "message": "Document deleted"})


@router.get("/{document_id}/download")
async def download_document(
    request: Request,
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    document = await get_company_document(document_id, user.company_id, db)
    storage = get_storage()
    if not storage.exists(document.storage_path):
        raise ApiError(status.HTTP_404_NOT_FOUND, "Document file not found in storage")

    ext = Path(document.original_filename).suffix.lower()
    return FileResponse(
        storage.resolve(document.storage_path),
        media_type=document.mime_type or _MIME_TYPES.get(ext, "application/octet-stream"),
        filename=document.original_filename,
        headers={"X-Request-Id": get_request_id(request)},
    )


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

@router.post("/{document_id}/extract", status_code=status.HTTP_202_ACCEPTED)
async def extract_document(
    request: Request,
    document_id: str,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Queue obligation extraction for *document_id*."""
    document = await get_company_document(document_id, user.company_id, db)
    if job_manager.is_running(EXTRACTION_JOB, document_id):
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY, "Document extraction is already in progress"
        )

    if not settings.BACKGROUND_JOBS_ENABLED:
        logger.warning("Extraction requested for %s but background jobs are disabled", document_id)
        return success_response(
            request,
            {
                "document_id": document_id,
                "extraction_status": getattr(
                    document.extraction_status, "value", document.extraction_status
                ),
                "queued": False,
                "message": "Background jobs are disabled; extraction was not queued",
            },
            status.HTTP_202_ACCEPTED,
        )

    document.extraction_status = ExtractionStatus.PROCESSING
    document.extraction_error = None
    await db.commit()
    _queue_extraction(document_id)

    return success_response(
        request,
        {
            "document_id": document_id,
            "extraction_status": ExtractionStatus.PROCESSING.value,
            "queued": True,
            "message": "Extraction started",
        },
        status.HTTP_202_ACCEPTED,
    )


@router.get("/{document_id}/extraction-status")
async def get_extraction_status(
    request: Request,
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    document = await get_company_document(document_id, user.company_id, db)
    obligation_count = (await _obligation_counts([document.id], db)).get(document.id, 0)
    current = getattr(document.extraction_status, "value", document.extraction_status)
    elapsed = (utcnow() - ensure_utc(document.updated_at or document.created_at)).total_seconds()

    return success_response(request, {
        "document_id": document.id,
        "extraction_status": current,
        "obligation_count": obligation_count,
        "extraction_error": document.extraction_error,
        "progress": extraction_progress(
            current,
            elapsed,
            bool(document.extracted_text and len(document.extracted_text) > 100),
            obligation_count,
            job_manager.is_running(EXTRACTION_JOB, document.id),
        ),
    })


async def _document_obligations(document_id: str, company_id: str, db: AsyncSession) -> List[Obligation]:
    result = await db.execute(
        select(Obligation)
        .where(
            Obligation.document_id == document_id,
            Obligation.company_id == company_id,
            Obligation.deleted_at.is_(None),
        )
        .order_by(Obligation.created_at.asc(), Obligation.id.asc())
    )
    return list(result.scalars().all())


@router.get("/{document_id}/extraction-results")
async def get_extraction_results(
    request: Request,
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    document = await get_company_document(document_id, user.company_id, db)
    obligations = await _document_obligations(document.id, user.company_id, db)

    log = (
        await db.execute(
            select(ExtractionLog)
            .where(ExtractionLog.document_id == document.id)
            .order_by(ExtractionLog.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    extraction_log = None
    if log is not None:
        extraction_log = {
            "id": log.id,
            "model_identifier": log.model_identifier,
            "input_tokens": log.input_tokens,
            "output_tokens": log.output_tokens,
            "estimated_cost": log.estimated_cost,
            "obligations_extracted": log.obligations_extracted,
            "rule_library_hits": log.rule_library_hits,
            "processing_time_ms": log.processing_time_ms,
            "errors": log.errors or [],
            "created_at": log.created_at,
        }

    return success_response(request, {
        "document_id": document.id,
        "extraction_status": getattr(document.extraction_status, "value", document.extraction_status),
        "obligation_count": len(obligations),
        "obligations": [ObligationOut.model_validate(o).model_dump() for o in obligations],
        "extraction_log": extraction_log,
    })


@router.get("/{document_id}/obligations")
async def get_document_obligations(
    request: Request,
    document_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    document = await get_company_document(document_id, user.company_id, db)
    obligations = await _document_obligations(document.id, user.company_id, db)
    return success_response(
        request, [ObligationOut.model_validate(o).model_dump() for o in obligations]
    )
