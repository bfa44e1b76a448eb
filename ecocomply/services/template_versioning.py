"""
Versioned notification templates.

Each ``template_code`` (normally a notification type such as
``AUDIT_PACK_READY``) has numbered versions; at most one is active.
Creating a version activates it; rolling back re-activates an older one.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.models.database_models import Notification, NotificationTemplate
from ecocomply.utils.helpers import utcnow

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(text: Optional[str], variables: Dict[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names render empty."""
    if not text:
        return ""
    return _PLACEHOLDER.sub(
        lambda m: "" if variables.get(m.group(1)) is None else str(variables[m.group(1)]),
        text,
    )


async def get_active_template(code: str, db: AsyncSession) -> Optional[NotificationTemplate]:
    result = await db.execute(
        select(NotificationTemplate)
        .where(NotificationTemplate.template_code == code, NotificationTemplate.is_active.is_(True))
        .order_by(NotificationTemplate.version.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_template_versions(code: str, db: AsyncSession) -> List[NotificationTemplate]:
    result = await db.execute(
        select(NotificationTemplate)
        .where(NotificationTemplate.template_code == code)
        .order_by(NotificationTemplate.version.desc())
    )
    return list(result.scalars().all())


async def create_template_version(
    code: str,
    data: Dict[str, Any],
    created_by: Optional[str],
    db: AsyncSession,
) -> NotificationTemplate:
    """Add version max+1 as the active version, retiring the current one."""
    current_max = (
        await db.execute(
            select(func.max(NotificationTemplate.version)).where(
                NotificationTemplate.template_code == code
            )
        )
    ).scalar()
    now = utcnow()

    await db.execute(
        update(NotificationTemplate)
        .where(NotificationTemplate.template_code == code, NotificationTemplate.is_active.is_(True))
        .values(is_active=False, effective_until=now)
    )

    template = NotificationTemplate(
        template_code=code,
        version=(current_max or 0) + 1,
        name=data.get("name"),
        subject_template=data["subject_template"],
        body_html_template=data.get("body_html_template"),
        body_text_template=data.get("body_text_template"),
        variables=data.get("variables"),
        is_active=True,
        effective_from=now,
        created_by=created_by,
    )
    db.add(template)
    await db.flush()
    logger.info("Template %s: version %d created", code, template.version)
    return template


async def rollback_template(code: str, version: int, db: AsyncSession) -> NotificationTemplate:
    """
    Make *version* the active version of *code*.

    Raises LookupError when that version does not exist.
    """
    target = (
        await db.execute(
            select(NotificationTemplate).where(
                NotificationTemplate.template_code == code,
                NotificationTemplate.version == version,
            )
        )
    ).scalar_one_or_none()
    if target is None:
        raise LookupError(f"Template {code} has no version {version}")

    await db.execute(
        update(NotificationTemplate)
        .where(NotificationTemplate.template_code == code)
        .values(is_active=False)
    )
    await db.refresh(target)
    target.is_active = True
    target.effective_from = utcnow()
    target.effective_until = None
    await db.flush()
    logger.info("Template %s rolled back to version %d", code, version)
    return target


async def store_template_version(
    notification_id: str, template_id: str, db: AsyncSession
) -> None:
    notification = await db.get(Notification, notification_id)
    if notification is None:
        return
    notification.metadata_json = {
        **(notification.metadata_json or {}),
        "template_version_id": template_id,
    }
    await db.flush()
