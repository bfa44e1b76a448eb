"""Tests for notification delivery, preferences and template rendering."""
from datetime import timedelta

import pytest

from ecocomply.models.database_models import NotificationStatus
from ecocomply.services.notification_preferences import (
    allows,
    resolve_preference,
    should_send_notification,
    update_user_preferences,
)
from ecocomply.services.notification_service import (
    MAX_RETRIES,
    DeliveryResult,
    apply_resend_event,
    create_notification,
    deliver_notification,
    process_pending_notifications,
)
from ecocomply.services.template_versioning import (
    create_template_version,
    get_active_template,
    render_template,
    rollback_template,
)
from ecocomply.utils.helpers import ensure_utc, utcnow


class FakeEmailClient:
    """Records sends and returns a canned result."""

    def __init__(self, result=None):
        self.result = result or DeliveryResult(success=True, message_id="msg_1")
        self.sent = []

    async def send_email(self, to, subject, html, text):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return self.result


async def _notification(db, company, user, **kwargs):
    defaults = dict(
        company_id=company.id,
        user_id=user.id,
        recipient_email=user.email,
        notification_type="DEADLINE_REMINDER",
        subject="Deadline tomorrow",
        body_text="Submit the quarterly report.",
    )
    defaults.update(kwargs)
    notification = await create_notification(db, **defaults)
    await db.commit()
    return notification


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_deliver_sends_with_fallback_content(db_session, company, owner):
    notification = await _notification(db_session, company, owner)
    client = FakeEmailClient()

    outcome = await deliver_notification(notification, db_session, client)

    assert outcome == NotificationStatus.SENT
    assert notification.delivery_provider == "RESEND"
    assert notification.delivery_provider_id == "msg_1"
    assert client.sent == [{
        "to": "owner@acmewater.co.uk",
        "subject": "Deadline tomorrow",
        "html": None,
        "text": "Submit the quarterly report.",
    }]


@pytest.mark.asyncio
async def test_deliver_renders_active_template(db_session, company, owner):
    await create_template_version(
        "DEADLINE_REMINDER",
        {
            "subject_template": "[{{company_name}}] {{subject}}",
            "body_text_template": "{{body_text}} See {{app_url}}",
        },
        owner.id,
        db_session,
    )
    notification = await _notification(db_session, company, owner)
    client = FakeEmailClient()

    await deliver_notification(notification, db_session, client)

    assert client.sent[0]["subject"] == "[Acme Water Ltd] Deadline tomorrow"
    assert client.sent[0]["text"].startswith("Submit the quarterly report. See http")
    assert notification.metadata_json["template_version_id"]


@pytest.mark.asyncio
async def test_transient_failure_schedules_retry(db_session, company, owner):
    notification = await _notification(db_session, company, owner)
    client = FakeEmailClient(DeliveryResult(success=False, error="timeout", retryable=True))

    before = utcnow()
    outcome = await deliver_notification(notification, db_session, client)

    assert outcome == NotificationStatus.RETRYING
    assert notification.metadata_json["retry_count"] == 1
    delay = ensure_utc(notification.scheduled_for) - before
    assert timedelta(minutes=4) < delay <= timedelta(minutes=6)


@pytest.mark.asyncio
async def test_retries_exhausted_fail(db_session, company, owner):
    notification = await _notification(
        db_session, company, owner, metadata={"retry_count": MAX_RETRIES}
    )
    client = FakeEmailClient(DeliveryResult(success=False, error="HTTP 503", retryable=True))

    outcome = await deliver_notification(notification, db_session, client)

    assert outcome == NotificationStatus.FAILED
    assert notification.metadata_json["max_retries_exceeded"] is True


@pytest.mark.asyncio
async def test_missing_recipient_fails(db_session, company, owner):
    notification = await _notification(db_session, company, owner, recipient_email=None)
    outcome = await deliver_notification(notification, db_session, FakeEmailClient())
    assert outcome == NotificationStatus.FAILED
    assert notification.delivery_error == "No recipient email address"


@pytest.mark.asyncio
async def test_digest_preference_queues(db_session, company, owner):
    await update_user_preferences(
        owner.id,
        [{"notification_type": "DEADLINE_REMINDER", "frequency_preference": "WEEKLY_DIGEST"}],
        db_session,
    )
    notification = await _notification(db_session, company, owner)
    client = FakeEmailClient()

    outcome = await deliver_notification(notification, db_session, client)

    assert outcome == NotificationStatus.QUEUED
    assert notification.metadata_json["digest"] == "WEEKLY_DIGEST"
    assert client.sent == []


@pytest.mark.asyncio
async def test_disabled_preference_cancels(db_session, company, owner):
    await update_user_preferences(
        owner.id, [{"notification_type": "ALL", "enabled": False}], db_session
    )
    notification = await _notification(db_session, company, owner)
    outcome = await deliver_notification(notification, db_session, FakeEmailClient())
    assert outcome == NotificationStatus.CANCELLED


@pytest.mark.asyncio
async def test_process_orders_by_priority_and_skips_future(db_session, company, owner):
    await _notification(db_session, company, owner, subject="normal")
    await _notification(db_session, company, owner, subject="critical", priority="CRITICAL")
    later = await _notification(db_session, company, owner, subject="later")
    later.scheduled_for = utcnow() + timedelta(hours=1)
    await db_session.commit()
    client = FakeEmailClient()

    counts = await process_pending_notifications(db_session, batch_size=10, client=client)

    assert counts["processed"] == 2
    assert counts["sent"] == 2
    assert [s["subject"] for s in client.sent] == ["critical", "normal"]


class ExplodingOnceClient(FakeEmailClient):
    """Raises on the first send, succeeds afterwards."""

    async def send_email(self, to, subject, html, text):
        if not self.sent:
            self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
            raise RuntimeError("provider exploded")
        return await super().send_email(to, subject, html, text)


@pytest.mark.asyncio
async def test_process_continues_after_send_raises(db_session, company, owner):
    first = await _notification(db_session, company, owner, subject="first", priority="HIGH")
    second = await _notification(db_session, company, owner, subject="second")

    counts = await process_pending_notifications(db_session, client=ExplodingOnceClient())

    assert counts["processed"] == 2
    assert counts["failed"] == 1
    assert counts["sent"] == 1
    await db_session.refresh(first)
    await db_session.refresh(second)
    assert first.status == NotificationStatus.FAILED
    assert first.delivery_error == "provider exploded"
    assert second.status == NotificationStatus.SENT


# ---------------------------------------------------------------------------
# Webhook events
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_resend_events(db_session, company, owner):
    notification = await _notification(db_session, company, owner)
    notification.delivery_provider_id = "msg_9"
    await db_session.commit()

    assert await apply_resend_event({"type": "email.opened", "data": {"email_id": "msg_9"}}, db_session)
    assert await apply_resend_event({"type": "email.opened", "data": {"email_id": "msg_9"}}, db_session)
    assert notification.metadata_json["open_count"] == 2

    bounced = {
        "type": "email.bounced",
        "data": {"email_id": "msg_9", "bounce": {"type": "hard", "message": "Mailbox does not exist"}},
    }
    assert await apply_resend_event(bounced, db_session)
    assert notification.status == NotificationStatus.BOUNCED
    assert notification.delivery_error == "Mailbox does not exist"

    assert not await apply_resend_event({"type": "email.sent", "data": {"email_id": "msg_9"}}, db_session)
    assert not await apply_resend_event({"type": "email.delivered"}, db_session)


# ---------------------------------------------------------------------------
# Preferences and templates
# ---------------------------------------------------------------------------

def test_resolve_preference_falls_back_to_all_then_default():
    prefs = [
        {"notification_type": "ALL", "channel_preference": "SMS_ONLY"},
        {"notification_type": "PACK_READY", "enabled": False},
    ]
    assert resolve_preference(prefs, "PACK_READY")["enabled"] is False
    assert resolve_preference(prefs, "OTHER")["channel_preference"] == "SMS_ONLY"
    assert resolve_preference([], "OTHER") == {
        "notification_type": "OTHER",
        "channel_preference": "ALL_CHANNELS",
        "frequency_preference": "IMMEDIATE",
        "enabled": True,
    }


def test_allows():
    pref = resolve_preference([], "X")
    assert allows(pref, "EMAIL")
    assert not allows({**pref, "channel_preference": "SMS_ONLY"}, "EMAIL")
    assert allows({**pref, "channel_preference": "EMAIL_ONLY"}, "EMAIL")
    assert not allows({**pref, "frequency_preference": "NEVER"}, "EMAIL")
    assert not allows({**pref, "frequency_preference": "DAILY_DIGEST"}, "EMAIL")


@pytest.mark.asyncio
async def test_should_send_without_user(db_session):
    assert await should_send_notification(None, "ANY", "EMAIL", db_session)


def test_render_template():
    assert render_template("Hi {{ name }}, {{missing}}!", {"name": "Sam"}) == "Hi Sam, !"
    assert render_template(None, {}) == ""
    assert render_template("{{count}} items", {"count": 0}) == "0 items"


@pytest.mark.asyncio
async def test_template_versioning(db_session, owner):
    first = await create_template_version("PACK_READY", {"subject_template": "v1"}, owner.id, db_session)
    second = await create_template_version("PACK_READY", {"subject_template": "v2"}, owner.id, db_session)
    assert (first.version, second.version) == (1, 2)
    assert (await get_active_template("PACK_READY", db_session)).subject_template == "v2"

    await rollback_template("PACK_READY", 1, db_session)
    assert (await get_active_template("PACK_READY", db_session)).subject_template == "v1"

    with pytest.raises(LookupError):
        await rollback_template("PACK_READY", 5, db_session)
