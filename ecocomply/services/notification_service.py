"""
Notification creation and email delivery through Resend.

Delivery cycle (``process_pending_notifications``)
--------------------------------------------------
For each due PENDING / RETRYING email notification, highest priority first:

1. Check the recipient's preferences: digest → QUEUED, disabled → CANCELLED.
2. Render the active template for the notification type, or fall back to
   the notification's own subject and body.
3. Send through the Resend HTTP API.
4. SENT on success; RETRYING (+5 min, then +30 min) on transient failure
   up to ``MAX_RETRIES``; FAILED otherwise.

Resend reports delivery, bounces, complaints, opens and clicks back through
the webhook handled by ``apply_resend_event``.
"""
from __future__ import annotations

import dataclasses
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.config import settings
from ecocomply.models.database_models import (
    Company,
    Notification,
    NotificationChannel,
    NotificationStatus,
)
from ecocomply.services.notification_preferences import (
    DIGEST_FREQUENCIES,
    allows,
    get_user_preferences,
)
from ecocomply.services.template_versioning import (
    get_active_template,
    render_template,
    store_template_version,
)
from ecocomply.utils.helpers import utcnow

logger = logging.getLogger(__name__)

PROVIDER = "RESEND"
MAX_RETRIES = 3
DEFAULT_BATCH_SIZE = 50

PRIORITY_RANK = {"CRITICAL": 5, "URGENT": 4, "HIGH": 3, "NORMAL": 2, "LOW": 1}


@dataclasses.dataclass
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False


# ---------------------------------------------------------------------------
# Resend client
# ---------------------------------------------------------------------------

class ResendClient:
    """Minimal client for Resend's ``POST /emails``."""

    TIMEOUT: float = 30.0

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None) -> None:
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.base_url = (base_url or settings.RESEND_API_URL).rstrip("/")

    async def send_email(
        self, to: str, subject: str, html: Optional[str], text: Optional[str]
    ) -> DeliveryResult:
        if not self.api_key:
            return DeliveryResult(success=False, error="Email provider is not configured")

        payload: Dict[str, Any] = {"from": settings.EMAIL_FROM, "to": [to], "subject": subject}
        if html:
            payload["html"] = html
        if text:
            payload["text"] = text

        try:
            async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
                resp = await client.post(
                    f"{self.base_url}/emails",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
        except httpx.TimeoutException:
            return DeliveryResult(success=False, error="timeout", retryable=True)
        except httpx.HTTPError as exc:
            return DeliveryResult(success=False, error=f"network error: {exc}", retryable=True)

        if resp.status_code in (200, 201):
            return DeliveryResult(success=True, message_id=(resp.json() or {}).get("id"))

        retryable = resp.status_code == 429 or resp.status_code >= 500
        return DeliveryResult(
            success=False,
            error=f"HTTP {resp.status_code}: {resp.text[:300]}",
            retryable=retryable,
        )


email_client = ResendClient()


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_notification(
    db: AsyncSession,
    *,
    company_id: str,
    notification_type: str,
    user_id: Optional[str] = None,
    site_id: Optional[str] = None,
    recipient_email: Optional[str] = None,
    channel: NotificationChannel = NotificationChannel.EMAIL,
    priority: str = "NORMAL",
    subject: Optional[str] = None,
    body_text: Optional[str] = None,
    body_html: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Notification:
    notification = Notification(
        company_id=company_id,
        user_id=user_id,
        site_id=site_id,
        recipient_email=recipient_email,
        notification_type=notification_type,
        channel=channel,
        priority=priority,
        subject=subject,
        body_text=body_text,
        body_html=body_html,
        entity_type=entity_type,
        entity_id=entity_id,
        status=NotificationStatus.PENDING,
        scheduled_for=utcnow(),
        metadata_json=metadata or {},
    )
    db.add(notification)
    await db.flush()
    return notification


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

async def _render(notification: Notification, db: AsyncSession) -> Dict[str, Optional[str]]:
    metadata = dict(notification.metadata_json or {})
    if not metadata.get("company_name"):
        company = await db.get(Company, notification.company_id)
        metadata["company_name"] = company.name if company else "EcoComply"

    variables = {
        **metadata,
        "subject": notification.subject,
        "body_text": notification.body_text,
        "notification_type": notification.notification_type,
        "entity_type": notification.entity_type,
        "entity_id": notification.entity_id,
        "app_url": settings.APP_URL,
    }

    template = await get_active_template(notification.notification_type, db)
    if template is None:
        return {
            "subject": notification.subject or notification.notification_type,
            "html": notification.body_html,
            "text": notification.body_text,
            "template_id": None,
        }
    return {
        "subject": render_template(template.subject_template, variables),
        "html": render_template(template.body_html_template, variables) or None,
        "text": render_template(template.body_text_template, variables) or None,
        "template_id": template.id,
    }


async def deliver_notification(
    notification: Notification,
    db: AsyncSession,
    client: Optional[ResendClient] = None,
) -> NotificationStatus:
    """Run one notification through preferences, rendering and sending."""
    client = client or email_client
    channel = getattr(notification.channel, "value", notification.channel)
    metadata = dict(notification.metadata_json or {})

    preference = await get_user_preferences(notification.user_id, notification.notification_type, db)
    if not allows(preference, channel):
        if preference["frequency_preference"] in DIGEST_FREQUENCIES:
            notification.status = NotificationStatus.QUEUED
            metadata["digest"] = preference["frequency_preference"]
        else:
            notification.status = NotificationStatus.CANCELLED
            metadata["cancelled_reason"] = "User preference disabled"
        notification.metadata_json = metadata
        return notification.status

    notification.status = NotificationStatus.SENDING
    await db.flush()

    rendered = await _render(notification, db)
    if rendered["template_id"]:
        await store_template_version(notification.id, rendered["template_id"], db)
        metadata = dict(notification.metadata_json or {})

    if not notification.recipient_email:
        result = DeliveryResult(success=False, error="No recipient email address")
    else:
        result = await client.send_email(
            notification.recipient_email, rendered["subject"], rendered["html"], rendered["text"]
        )

    now = utcnow()
    if result.success:
        notification.status = NotificationStatus.SENT
        notification.delivery_provider = PROVIDER
        notification.delivery_provider_id = result.message_id
        notification.delivery_error = None
        notification.sent_at = now
        notification.subject = rendered["subject"]
        return notification.status

    retry_count = int(metadata.get("retry_count", 0)) + 1
    metadata["retry_count"] = retry_count
    notification.delivery_error = result.error or "Unknown error"

    if result.retryable and retry_count <= MAX_RETRIES:
        delay = timedelta(minutes=5 if retry_count == 1 else 30)
        notification.status = NotificationStatus.RETRYING
        notification.scheduled_for = now + delay
        metadata["last_retry_at"] = now.isoformat()
    else:
        notification.status = NotificationStatus.FAILED
        metadata["failed_at"] = now.isoformat()
        metadata["max_retries_exceeded"] = retry_count > MAX_RETRIES
    notification.metadata_json = metadata
    return notification.status


async def process_pending_notifications(
    db: AsyncSession,
    batch_size: int = DEFAULT_BATCH_SIZE,
    client: Optional[ResendClient] = None,
) -> Dict[str, int]:
    """Deliver one batch of due email notifications; returns counts by outcome."""
    now = utcnow()
    priority_rank = case(PRIORITY_RANK, value=Notification.priority, else_=0)
    rows = await db.execute(
        select(Notification.id)
        .where(
            Notification.status.in_([NotificationStatus.PENDING, NotificationStatus.RETRYING]),
            Notification.channel == NotificationChannel.EMAIL,
            or_(Notification.scheduled_for.is_(None), Notification.scheduled_for <= now),
        )
        .order_by(priority_rank.desc(), Notification.created_at.asc())
        .limit(batch_size)
    )
    # Ids only: a rollback expires loaded rows, so each one is fetched in turn
    notification_ids = rows.scalars().all()

    counts = {"processed": 0, "sent": 0, "retrying": 0, "failed": 0, "queued": 0, "cancelled": 0}
    for notification_id in notification_ids:
        notification = await db.get(Notification, notification_id)
        if notification is None:
            continue
        try:
            outcome = await deliver_notification(notification, db, client)
        except Exception as exc:
            logger.error("Error processing notification %s: %s", notification_id, exc, exc_info=True)
            await db.rollback()
            failed = await db.get(Notification, notification_id)
            failed.status = NotificationStatus.FAILED
            failed.delivery_error = str(exc)[:500] or "Unknown error"
            outcome = NotificationStatus.FAILED
        await db.commit()

        counts["processed"] += 1
        key = outcome.value.lower()
        if key in counts:
            counts[key] += 1

    logger.info(
        "Notification delivery: %d processed — %d sent, %d retrying, %d failed",
        counts["processed"],
        counts["sent"],
        counts["retrying"],
        counts["failed"],
    )
    return counts


# ---------------------------------------------------------------------------
# Webhook events
# ---------------------------------------------------------------------------

async def apply_resend_event(event: Dict[str, Any], db: AsyncSession) -> bool:
    """
    Apply one Resend webhook event to the matching notification.

    Returns False when the event has no message id, matches no
    notification, or has an unhandled type.
    """
    data = event.get("data") or {}
    message_id = data.get("email_id") or event.get("email_id")
    if not message_id:
        logger.warning("Resend webhook event missing email_id: %s", event.get("type"))
        return False

    notification = (
        await db.execute(
            select(Notification)
            .where(Notification.delivery_provider_id == message_id)
            .limit(1)
        )
    ).scalar_one_or_none()
    if notification is None:
        logger.warning("Notification not found for Resend message id %s", message_id)
        return False

    event_type = event.get("type") or event.get("event") or ""
    if event_type.startswith("email."):
        event_type = event_type[len("email."):]

    now = utcnow()
    metadata = dict(notification.metadata_json or {})
    if event_type == "delivered":
        notification.status = NotificationStatus.DELIVERED
        notification.delivered_at = now
    elif event_type == "bounced":
        bounce = data.get("bounce") or {}
        bounce_type = bounce.get("type") or data.get("bounce_type") or event.get("bounce_type")
        notification.status = NotificationStatus.BOUNCED
        notification.delivery_error = bounce.get("message") or bounce_type or "Email bounced"
        metadata["bounce_type"] = bounce_type
    elif event_type in ("complained", "spamreport"):
        notification.status = NotificationStatus.COMPLAINED
        notification.delivery_error = "Marked as spam"
    elif event_type == "opened":
        metadata["opened_at"] = now.isoformat()
        metadata["open_count"] = int(metadata.get("open_count", 0)) + 1
    elif event_type == "clicked":
        metadata["clicked_at"] = now.isoformat()
        metadata["click_count"] = int(metadata.get("click_count", 0)) + 1
    else:
        logger.info("Unhandled Resend webhook event type: %s", event_type)
        return False

    notification.metadata_json = metadata
    await db.flush()
    return True
