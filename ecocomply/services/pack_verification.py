"""
Audit pack verification: content hashing and QR codes.

Each generated pack stores the SHA-256 of its PDF.  The QR code printed for
a pack points at the public verification page, which calls
``GET /api/v1/packs/{id}/verify`` to compare hashes.
"""
from __future__ import annotations

import base64
import dataclasses
import io
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_M
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.config import settings
from ecocomply.models.database_models import AuditPack, Company, PackStatus, Site, User
from ecocomply.utils.helpers import generate_hash, utcnow

logger = logging.getLogger(__name__)

QR_WIDTH_PX = 300
QR_BORDER = 2

VERIFIABLE_STATUSES = (PackStatus.COMPLETED, PackStatus.DISTRIBUTED)


@dataclasses.dataclass
class VerificationResult:
    is_valid: bool
    pack_id: str
    content_hash: Optional[str] = None
    verification_timestamp: Optional[datetime] = None
    pack_details: Dict[str, Any] = dataclasses.field(default_factory=dict)
    reason: Optional[str] = None


@dataclasses.dataclass
class VerificationData:
    pack_id: str
    content_hash: str
    generated_at: Optional[datetime]
    generated_by: str
    pack_type: str
    site_name: str
    company_name: str
    verification_url: str
    qr_code_data_url: str


def verification_url(pack_id: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}/verify-pack/{pack_id}"


def generate_content_hash(content: Union[bytes, str]) -> str:
    return generate_hash(content)


def generate_qr_code(pack_id: str) -> str:
    """PNG data URL of a QR code pointing at the pack's verification page."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=QR_BORDER)
    qr.add_data(verification_url(pack_id))
    qr.make(fit=True)
    qr.box_size = max(1, QR_WIDTH_PX // (qr.modules_count + 2 * QR_BORDER))

    image = qr.make_image(fill_color="black", back_color="white").get_image()
    image = image.convert("RGB").resize((QR_WIDTH_PX, QR_WIDTH_PX), Image.NEAREST)

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _pack_type(pack: AuditPack) -> str:
    return getattr(pack.pack_type, "value", pack.pack_type)


def _stored_hash(pack: AuditPack) -> Optional[str]:
    if pack.content_hash:
        return pack.content_hash
    verification = (pack.metadata_json or {}).get("verification") or {}
    return verification.get("content_hash")


async def _pack_details(pack: AuditPack, db: AsyncSession) -> Dict[str, Any]:
    company = await db.get(Company, pack.company_id)
    site = await db.get(Site, pack.site_id) if pack.site_id else None
    generated_by = await db.get(User, pack.generated_by) if pack.generated_by else None
    return {
        "pack_type": _pack_type(pack),
        "generated_at": pack.generated_at,
        "generated_by": generated_by.email if generated_by else None,
        "company_name": company.name if company else None,
        "site_name": site.name if site else None,
    }


async def store_verification(pack_id: str, content_hash: str, db: AsyncSession) -> None:
    pack = await db.get(AuditPack, pack_id)
    if pack is None:
        raise ValueError(f"Pack {pack_id} not found")

    generated_at = utcnow()
    pack.content_hash = content_hash
    pack.verification_generated_at = generated_at
    metadata = dict(pack.metadata_json or {})
    metadata["verification"] = {
        "content_hash": content_hash,
        "hash_generated_at": generated_at.isoformat(),
    }
    pack.metadata_json = metadata
    await db.flush()
    logger.info("Verification hash stored for pack %s", pack_id)


async def verify_pack(
    pack_id: str,
    db: AsyncSession,
    provided_hash: Optional[str] = None,
) -> VerificationResult:
    """
    Check a pack's stored hash, and *provided_hash* against it when given.

    A pack is verifiable once it is COMPLETED or DISTRIBUTED and has a
    stored content hash.
    """
    pack = (
        await db.execute(select(AuditPack).where(AuditPack.id == pack_id))
    ).scalar_one_or_none()
    if pack is None:
        return VerificationResult(
            is_valid=False, pack_id=pack_id, reason="Pack not found in database"
        )

    details = await _pack_details(pack, db)
    status = getattr(pack.status, "value", pack.status)
    if pack.status not in VERIFIABLE_STATUSES:
        return VerificationResult(
            is_valid=False,
            pack_id=pack_id,
            pack_details=details,
            reason=f"Pack is not completed (status: {status})",
        )

    stored = _stored_hash(pack)
    if not stored:
        return VerificationResult(
            is_valid=False,
            pack_id=pack_id,
            pack_details=details,
            reason="No verification hash stored for this pack",
        )

    if provided_hash and provided_hash.lower() != stored.lower():
        return VerificationResult(
            is_valid=False,
            pack_id=pack_id,
            content_hash=stored,
            verification_timestamp=pack.verification_generated_at,
            pack_details=details,
            reason="Content hash mismatch - pack may have been tampered with",
        )

    return VerificationResult(
        is_valid=True,
        pack_id=pack_id,
        content_hash=stored,
        verification_timestamp=pack.verification_generated_at,
        pack_details=details,
    )


async def get_verification_data(pack_id: str, db: AsyncSession) -> Optional[VerificationData]:
    """Hash, QR code and URL for a verifiable pack; None otherwise."""
    pack = await db.get(AuditPack, pack_id)
    if pack is None or pack.status not in VERIFIABLE_STATUSES:
        return None
    content_hash = _stored_hash(pack)
    if not content_hash:
        return None

    details = await _pack_details(pack, db)
    return VerificationData(
        pack_id=pack.id,
        content_hash=content_hash,
        generated_at=pack.verification_generated_at or pack.generated_at,
        generated_by=details["generated_by"] or "Unknown",
        pack_type=details["pack_type"],
        site_name=details["site_name"] or "N/A",
        company_name=details["company_name"] or "Unknown",
        verification_url=verification_url(pack.id),
        qr_code_data_url=generate_qr_code(pack.id),
    )


async def create_verification(
    pack_id: str, content: bytes, db: AsyncSession
) -> Optional[VerificationData]:
    """Hash *content*, store it on the pack and return the verification data."""
    await store_verification(pack_id, generate_content_hash(content), db)
    return await get_verification_data(pack_id, db)


async def verify_pack_by_content(
    pack_id: str, content: bytes, db: AsyncSession
) -> VerificationResult:
    return await verify_pack(pack_id, db, provided_hash=generate_content_hash(content))
