"""
Audit pack endpoints.

GET  /                    — list packs
POST /generate            — queue pack generation (202)
GET  /{id}                — pack + signature stats
GET  /{id}/download       — PDF (auth, or ?token= shared link)
POST /{id}/share          — create a shared download link
GET  /{id}/download-link  — latest shared link
POST /{id}/sign           — add a signature
GET  /{id}/signatures     — signature chain + stats
GET  /{id}/verify         — public hash/signature verification
GET  /{id}/verification   — hash + QR code
"""
from __future__ import annotations

import logging
import re
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.config import settings
from ecocomply.database import get_db
from ecocomply.dependencies.auth import (
    ALL_ROLES,
    MANAGER_ROLES,
    CurrentUser,
    client_ip,
    get_current_user,
    require_role,
)
from ecocomply.models.database_models import AuditPack, PackDistribution, PackStatus, PackType
from ecocomply.models.schemas import PackGenerateRequest, PackOut, PackShareRequest, PackSignRequest
from ecocomply.routers.sites import get_company_site
from ecocomply.services.audit_log import record_audit
from ecocomply.services.digital_signature import (
    PackNotFoundError,
    create_signature,
    get_signature_chain,
    get_signature_stats,
    has_auditor_attestation,
    verify_signature,
)
from ecocomply.services.job_manager import job_manager
from ecocomply.services.pack_generator import PACK_GENERATION_JOB, PACK_TYPE_LABELS, run_pack_generation
from ecocomply.services.pack_verification import get_verification_data, verify_pack
from ecocomply.services.rate_limiter import rate_limiter
from ecocomply.services.storage import get_storage
from ecocomply.utils.api_response import (
    ApiError,
    apply_cursor,
    clamp_limit,
    get_request_id,
    paginated_response,
    split_page,
    success_response,
)
from ecocomply.utils.helpers import add_months, ensure_utc, is_valid_uuid, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

DOWNLOADABLE_STATUSES = (PackStatus.COMPLETED, PackStatus.DISTRIBUTED)
SHARED_LINK = "SHARED_LINK"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def get_company_pack(pack_id: str, company_id: str, db: AsyncSession) -> AuditPack:
    result = await db.execute(
        select(AuditPack).where(AuditPack.id == pack_id, AuditPack.company_id == company_id)
    )
    pack = result.scalar_one_or_none()
    if pack is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Pack not found")
    return pack


def _status(pack: AuditPack) -> str:
    return getattr(pack.status, "value", pack.status)


def _require_downloadable(pack: AuditPack) -> None:
    if pack.status not in DOWNLOADABLE_STATUSES:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Pack is not ready (status: {_status(pack)})",
        )


def _download_filename(pack: AuditPack) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", pack.title).strip("_") + ".pdf"


def download_url(pack_id: str, token: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}/api/v1/packs/{pack_id}/download?token={token}"


# ---------------------------------------------------------------------------
# List / generate
# ---------------------------------------------------------------------------

@router.get("")
async def list_packs(
    request: Request,
    pack_type: Optional[PackType] = Query(None),
    status_filter: Optional[PackStatus] = Query(None, alias="status"),
    site_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    limit = clamp_limit(limit)
    stmt = select(AuditPack).where(AuditPack.company_id == user.company_id)
    if pack_type:
        stmt = stmt.where(AuditPack.pack_type == pack_type)
    if status_filter:
        stmt = stmt.where(AuditPack.status == status_filter)
    if site_id:
        stmt = stmt.where(AuditPack.site_id == site_id)

    rows = (await db.execute(apply_cursor(stmt, AuditPack, cursor, limit))).scalars().all()
    page, has_more, next_cursor = split_page(rows, limit)
    return paginated_response(
        request,
        [PackOut.model_validate(p).model_dump() for p in page],
        limit,
        has_more,
        next_cursor,
    )


@router.post("/generate", status_code=status.HTTP_202_ACCEPTED)
async def generate_pack(
    request: Request,
    body: PackGenerateRequest,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """
    Queue generation of an audit pack.

    - ``site_id`` is required except for BOARD_MULTI_SITE_RISK packs
    - The date range defaults to the last 12 months
    """
    valid_types = [t.value for t in PackType]
    if body.pack_type not in valid_types:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Invalid pack_type. Must be one of: {', '.join(valid_types)}",
            details={"field": "pack_type"},
        )
    pack_type = PackType(body.pack_type)

    if not body.company_id:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "company_id is required",
            details={"field": "company_id"},
        )
    if body.company_id != user.company_id:
        raise ApiError(status.HTTP_403_FORBIDDEN, "Insufficient permissions for this company")

    if pack_type != PackType.BOARD_MULTI_SITE_RISK and not body.site_id:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "site_id is required for this pack type",
            details={"field": "site_id"},
        )
    if body.site_id:
        await get_company_site(body.site_id, user.company_id, db)

    today = utcnow().date()
    end = body.date_range_end or today
    start = body.date_range_start or add_months(end, -12)
    if start > end:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "date_range_start must be on or before date_range_end",
            details={"field": "date_range_start"},
        )

    try:
        pack = AuditPack(
            company_id=user.company_id,
            site_id=body.site_id,
            document_id=body.document_id,
            pack_type=pack_type,
            title=f"{PACK_TYPE_LABELS[pack_type.value]} - {today:%d/%m/%Y}",
            status=PackStatus.GENERATING,
            date_range_start=start,
            date_range_end=end,
            filters=body.filters or {},
            recipient_type=body.recipient_type or "INTERNAL",
            recipient_name=body.recipient_name,
            purpose=body.purpose,
            generated_by=user.id,
        )
        db.add(pack)
        await db.commit()
        await db.refresh(pack)

        if settings.BACKGROUND_JOBS_ENABLED:
            pack_id = pack.id
            job_manager.enqueue(PACK_GENERATION_JOB, pack_id, lambda: run_pack_generation(pack_id))

        logger.info("Pack %s (%s) queued by %s", pack.id, pack_type.value, user.id)
        return success_response(
            request,
            {
                "pack_id": pack.id,
                "pack_type": pack_type.value,
                "status": PackStatus.GENERATING.value,
                "message": "Pack generation started. You will be notified when it is ready.",
            },
            status.HTTP_202_ACCEPTED,
        )
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("Error queueing pack generation")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error generating pack: {exc}",
        )


# ---------------------------------------------------------------------------
# Single pack
# ---------------------------------------------------------------------------

@router.get("/{pack_id}")
async def get_pack(
    request: Request,
    pack_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    pack = await get_company_pack(pack_id, user.company_id, db)
    data = PackOut.model_validate(pack).model_dump()
    data["signature_stats"] = await get_signature_stats(pack.id, db)
    return success_response(request, data)


@router.get("/{pack_id}/download")
async def download_pack(
    request: Request,
    pack_id: str,
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Stream the pack PDF to a signed-in user, or to anyone holding a valid shared-link token."""
    if token:
        distribution = (
            await db.execute(
                select(PackDistribution).where(
                    PackDistribution.pack_id == pack_id,
                    PackDistribution.shared_link_token == token,
                )
            )
        ).scalar_one_or_none()
        if distribution is None:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Shared link not found")
        if distribution.expires_at and ensure_utc(distribution.expires_at) < utcnow():
            raise ApiError(status.HTTP_422_UNPROCESSABLE_ENTITY, "Shared link has expired")
        pack = await db.get(AuditPack, pack_id)
        if pack is None:
            raise ApiError(status.HTTP_404_NOT_FOUND, "Pack not found")
        _require_downloadable(pack)
        distribution.view_count = (distribution.view_count or 0) + 1
        await db.commit()
    else:
        user = await get_current_user(request, db)
        pack = await get_company_pack(pack_id, user.company_id, db)
        _require_downloadable(pack)

    storage = get_storage()
    if not pack.storage_path or not storage.exists(pack.storage_path):
        raise ApiError(status.HTTP_404_NOT_FOUND, "Pack file not found in storage")
    return FileResponse(
        storage.resolve(pack.storage_path),
        media_type="application/pdf",
        filename=_download_filename(pack),
        headers={"X-Request-Id": get_request_id(request)},
    )


@router.post("/{pack_id}/share", status_code=status.HTTP_201_CREATED)
async def share_pack(
    request: Request,
    pack_id: str,
    body: PackShareRequest,
    user: CurrentUser = Depends(require_role(*ALL_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    pack = await get_company_pack(pack_id, user.company_id, db)
    _require_downloadable(pack)

    token = secrets.token_urlsafe(32)
    distribution = PackDistribution(
        pack_id=pack.id,
        distribution_method=SHARED_LINK,
        distributed_to=body.distributed_to,
        shared_link_token=token,
        expires_at=utcnow() + timedelta(days=body.expires_in_days),
        distributed_by=user.id,
    )
    db.add(distribution)
    pack.status = PackStatus.DISTRIBUTED
    await db.commit()
    await db.refresh(distribution)

    return success_response(
        request,
        {
            "distribution_id": distribution.id,
            "shared_link_token": token,
            "download_url": download_url(pack.id, token),
            "expires_at": distribution.expires_at,
        },
        status.HTTP_201_CREATED,
    )


@router.get("/{pack_id}/download-link")
async def get_download_link(
    request: Request,
    pack_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    pack = await get_company_pack(pack_id, user.company_id, db)
    _require_downloadable(pack)

    distribution = (
        await db.execute(
            select(PackDistribution)
            .where(
                PackDistribution.pack_id == pack.id,
                PackDistribution.distribution_method == SHARED_LINK,
            )
            .order_by(PackDistribution.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if distribution is None or not distribution.shared_link_token:
        raise ApiError(status.HTTP_404_NOT_FOUND, "No shared link exists for this pack")
    if distribution.expires_at and ensure_utc(distribution.expires_at) < utcnow():
        raise ApiError(status.HTTP_422_UNPROCESSABLE_ENTITY, "Shared link has expired")

    return success_response(request, {
        "download_url": download_url(pack.id, distribution.shared_link_token),
        "shared_link_token": distribution.shared_link_token,
        "expires_at": distribution.expires_at,
        "view_count": distribution.view_count,
    })


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

@router.post("/{pack_id}/sign", status_code=status.HTTP_201_CREATED)
async def sign_pack(
    request: Request,
    pack_id: str,
    body: PackSignRequest,
    user: CurrentUser = Depends(require_role(*MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    pack = await get_company_pack(pack_id, user.company_id, db)
    try:
        signature = await create_signature(pack.id, body.signature_type, user.id, db)
    except PackNotFoundError:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Pack not found")
    except ValueError as exc:
        raise ApiError(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))

    await record_audit(
        db,
        entity_type="audit_pack",
        entity_id=pack_id,
        action="PACK_SIGNED",
        company_id=user.company_id,
        user_id=user.id,
        changes={"signature_id": signature["id"], "signature_type": body.signature_type},
        ip_address=client_ip(request),
    )
    await db.commit()
    return success_response(request, signature, status.HTTP_201_CREATED)


@router.get("/{pack_id}/signatures")
async def list_signatures(
    request: Request,
    pack_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    pack = await get_company_pack(pack_id, user.company_id, db)
    return success_response(request, {
        "pack_id": pack.id,
        "signatures": await get_signature_chain(pack.id, db),
        "stats": await get_signature_stats(pack.id, db),
        "has_auditor_attestation": await has_auditor_attestation(pack.id, db),
    })


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@router.get("/{pack_id}/verify")
async def verify_pack_public(
    request: Request,
    pack_id: str,
    provided_hash: Optional[str] = Query(None, alias="hash"),
    db: AsyncSession = Depends(get_db),
):
    """
    Public verification used by the QR code on each pack.

    Compares the optional ``?hash=`` with the stored content hash and checks
    the latest signature.
    """
    await rate_limiter.check(f"ip:{client_ip(request)}")
    if not is_valid_uuid(pack_id):
        raise ApiError(status.HTTP_400_BAD_REQUEST, "Invalid pack ID format")

    pack = await db.get(AuditPack, pack_id)
    if pack is None:
        raise ApiError(status.HTTP_404_NOT_FOUND, "Pack not found")
    if pack.status not in DOWNLOADABLE_STATUSES:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            f"Pack is not available for verification (status: {_status(pack)})",
        )

    result = await verify_pack(pack.id, db, provided_hash=provided_hash)
    signature_valid, signature_details = await verify_signature(pack.id, db)
    chain = await get_signature_chain(pack.id, db)
    latest: Dict[str, Any] = chain[-1] if chain else {}

    if not chain:
        signature_status = "UNSIGNED"
    elif signature_valid:
        signature_status = "SIGNED"
    else:
        signature_status = "INVALID"

    await record_audit(
        db,
        entity_type="audit_pack",
        entity_id=pack.id,
        action="PACK_VERIFICATION",
        company_id=pack.company_id,
        changes={
            "verified": result.is_valid,
            "hash_provided": bool(provided_hash),
            "signature_status": signature_status,
            "reason": result.reason,
        },
        ip_address=client_ip(request),
    )
    await db.commit()

    details = result.pack_details
    return success_response(request, {
        "verified": result.is_valid,
        "pack_id": pack.id,
        "generated_at": details.get("generated_at"),
        "generated_by": details.get("generated_by"),
        "pack_type": details.get("pack_type"),
        "site_name": details.get("site_name"),
        "company_name": details.get("company_name"),
        "content_hash": result.content_hash,
        "verification_timestamp": result.verification_timestamp,
        "signature_status": signature_status,
        "reason": result.reason,
        "details": {
            "hash_match": result.is_valid if provided_hash else None,
            "signed_at": latest.get("signed_at"),
            "signed_by_name": latest.get("user_name"),
            "signature_type": latest.get("signature_type"),
            "signature_message": signature_details.verification_message,
        },
    })


@router.get("/{pack_id}/verification")
async def get_pack_verification(
    request: Request,
    pack_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    pack = await get_company_pack(pack_id, user.company_id, db)
    data = await get_verification_data(pack.id, db)
    if data is None:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Verification data is not available for this pack (status: {_status(pack)})",
        )
    return success_response(request, {
        "pack_id": data.pack_id,
        "content_hash": data.content_hash,
        "generated_at": data.generated_at,
        "generated_by": data.generated_by,
        "pack_type": data.pack_type,
        "site_name": data.site_name,
        "company_name": data.company_name,
        "verification_url": data.verification_url,
        "qr_code": data.qr_code_data_url,
    })
