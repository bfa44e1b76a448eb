"""
Digital signatures for audit packs.

A signature binds the pack's content hash to a signer and a timestamp:

    signature_hash = sha256("{pack_hash}:{signed_at}:{signed_by}:{signature_type}")

Signatures are appended to ``audit_packs.signatures`` (a JSON list) and are
never removed, so the list is the pack's signing history in order.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.models.database_models import AuditPack, PackStatus, User
from ecocomply.utils.helpers import generate_hash, utcnow

logger = logging.getLogger(__name__)

INTERNAL = "INTERNAL"
AUDITOR_ATTESTATION = "AUDITOR_ATTESTATION"
SIGNATURE_TYPES = (INTERNAL, AUDITOR_ATTESTATION)

SIGNABLE_STATUSES = (PackStatus.COMPLETED,)


class PackNotFoundError(LookupError):
    pass


@dataclasses.dataclass
class SignatureDetails:
    pack_id: str
    signatures: List[Dict[str, Any]]
    is_valid: bool
    verification_message: str
    pack_type: Optional[str] = None
    generated_at: Optional[str] = None
    latest_signature: Optional[Dict[str, Any]] = None


def generate_pack_hash(content: Union[bytes, str]) -> str:
    return generate_hash(content)


def _signature_hash(pack_hash: str, signed_at: str, signed_by: str, signature_type: str) -> str:
    return generate_hash(f"{pack_hash}:{signed_at}:{signed_by}:{signature_type}")


async def _load_pack(pack_id: str, db: AsyncSession) -> Optional[AuditPack]:
    return (
        await db.execute(select(AuditPack).where(AuditPack.id == pack_id))
    ).scalar_one_or_none()


async def create_signature(
    pack_id: str,
    signature_type: str,
    user_id: str,
    db: AsyncSession,
    content: Union[bytes, str, None] = None,
) -> Dict[str, Any]:
    """
    Sign a completed pack.

    The pack hash comes from *content* when given, otherwise from the stored
    ``content_hash``.

    Raises:
        PackNotFoundError: no such pack.
        ValueError:        unknown signature type, pack not completed, or no
                           hash available.
    """
    if signature_type not in SIGNATURE_TYPES:
        raise ValueError(f"Unknown signature type: {signature_type}")

    pack = await _load_pack(pack_id, db)
    if pack is None:
        raise PackNotFoundError(f"Pack not found: {pack_id}")
    if pack.status not in SIGNABLE_STATUSES:
        status = getattr(pack.status, "value", pack.status)
        raise ValueError(f"Cannot sign pack with status: {status}. Pack must be COMPLETED.")

    if content is not None:
        pack_hash = generate_pack_hash(content)
    elif pack.content_hash:
        pack_hash = pack.content_hash
    else:
        raise ValueError("No pack content or hash available for signing")

    signed_at = utcnow().isoformat()
    signature = {
        "id": str(uuid.uuid4()),
        "pack_id": pack_id,
        "signature_hash": _signature_hash(pack_hash, signed_at, user_id, signature_type),
        "pack_hash": pack_hash,
        "signature_type": signature_type,
        "signed_by": user_id,
        "signed_at": signed_at,
        "metadata": {},
    }
    # New list so the JSON column is flagged dirty
    pack.signatures = [*(pack.signatures or []), signature]
    await db.flush()

    logger.info("Signature created for pack %s by user %s (%s)", pack_id, user_id, signature_type)
    return signature


async def verify_signature(
    pack_id: str,
    db: AsyncSession,
    content: Union[bytes, str, None] = None,
) -> Tuple[bool, SignatureDetails]:
    """Check the latest signature, and *content* against it when given."""
    pack = await _load_pack(pack_id, db)
    if pack is None:
        return False, SignatureDetails(
            pack_id=pack_id, signatures=[], is_valid=False,
            verification_message="Pack not found",
        )

    signatures = list(pack.signatures or [])
    base = {
        "pack_id": pack.id,
        "pack_type": getattr(pack.pack_type, "value", pack.pack_type),
        "generated_at": pack.generated_at.isoformat() if pack.generated_at else None,
        "signatures": signatures,
    }

    def _result(valid: bool, message: str) -> Tuple[bool, SignatureDetails]:
        return valid, SignatureDetails(
            **base,
            is_valid=valid,
            verification_message=message,
            latest_signature=signatures[-1] if signatures else None,
        )

    if not signatures:
        return _result(False, "No signatures found for this pack")

    latest = signatures[-1]
    if content is not None:
        computed = generate_pack_hash(content)
        if computed != latest.get("pack_hash"):
            return _result(False, "Pack content hash mismatch - pack may have been tampered with")
        if pack.content_hash and pack.content_hash != computed:
            return _result(False, "Pack content does not match stored hash")

    expected = _signature_hash(
        latest.get("pack_hash", ""),
        latest.get("signed_at", ""),
        latest.get("signed_by", ""),
        latest.get("signature_type", ""),
    )
    if expected != latest.get("signature_hash"):
        return _result(False, "Signature hash verification failed")

    return _result(True, f"Pack verified successfully with {len(signatures)} signature(s)")


async def get_pack_signatures(pack_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    pack = await _load_pack(pack_id, db)
    if pack is None:
        return []
    return list(pack.signatures or [])


async def get_signature_stats(pack_id: str, db: AsyncSession) -> Dict[str, Any]:
    signatures = await get_pack_signatures(pack_id, db)
    return {
        "total_signatures": len(signatures),
        "internal_signatures": sum(1 for s in signatures if s.get("signature_type") == INTERNAL),
        "auditor_signatures": sum(
            1 for s in signatures if s.get("signature_type") == AUDITOR_ATTESTATION
        ),
        "first_signed_at": signatures[0].get("signed_at") if signatures else None,
        "last_signed_at": signatures[-1].get("signed_at") if signatures else None,
    }


async def has_auditor_attestation(pack_id: str, db: AsyncSession) -> bool:
    signatures = await get_pack_signatures(pack_id, db)
    return any(s.get("signature_type") == AUDITOR_ATTESTATION for s in signatures)


async def get_signature_chain(pack_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    """Signatures in signing order, each with the signer's name and email."""
    signatures = await get_pack_signatures(pack_id, db)
    if not signatures:
        return []

    signer_ids = {s.get("signed_by") for s in signatures if s.get("signed_by")}
    rows = await db.execute(select(User).where(User.id.in_(signer_ids)))
    users = {u.id: u for u in rows.scalars().all()}

    chain = []
    for signature in signatures:
        user = users.get(signature.get("signed_by"))
        chain.append({
            **signature,
            "user_name": user.full_name if user else None,
            "user_email": user.email if user else None,
        })
    return chain
