"""Append-only audit trail of user actions."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.models.database_models import AuditLog

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    company_id: Optional[str] = None,
    user_id: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """Add an audit_logs row to the session (committed with the request)."""
    entry = AuditLog(
        company_id=company_id,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        changes=changes,
        ip_address=ip_address,
    )
    db.add(entry)
    await db.flush()
    logger.debug("audit: %s %s/%s by %s", action, entity_type, entity_id, user_id)
    return entry
