"""Tests for notification, preference, template and webhook endpoints."""
import pytest
from httpx import AsyncClient

from ecocomply.models.database_models import NotificationStatus
from ecocomply.services.notification_service import create_notification


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_only_own_notifications(client: AsyncClient, db_session, company, owner, staff, owner_headers):
    await create_notification(
        db_session,
        company_id=company.id,
        user_id=owner.id,
        notification_type="DEADLINE_REMINDER",
        subject="Deadline tomorrow",
    )
    await create_notification(
        db_session,
        company_id=company.id,
        user_id=staff.id,
        notification_type="DEADLINE_REMINDER",
        subject="Someone else's",
    )
    await db_session.commit()

    resp = await client.get("/api/v1/notifications", headers=owner_headers)
    assert resp.status_code == 200
    items = resp.json()["data"]
    assert [n["subject"] for n in items] == ["Deadline tomorrow"]
    assert items[0]["status"] == "PENDING"


@pytest.mark.asyncio
async def test_process_without_provider_fails_notifications(
    client: AsyncClient, db_session, company, owner, owner_headers, staff_headers
):
    notification = await create_notification(
        db_session,
        company_id=company.id,
        user_id=owner.id,
        recipient_email=owner.email,
        notification_type="DEADLINE_REMINDER",
        subject="Deadline tomorrow",
        body_text="Submit the quarterly report.",
    )
    await db_session.commit()

    resp = await client.post("/api/v1/notifications/process", headers=staff_headers)
    assert resp.status_code == 403

    resp = await client.post("/api/v1/notifications/process?batch_size=10", headers=owner_headers)
    assert resp.status_code == 200
    counts = resp.json()["data"]
    assert counts["processed"] == 1
    assert counts["failed"] == 1

    await db_session.refresh(notification)
    assert notification.status == NotificationStatus.FAILED
    assert notification.delivery_error == "Email provider is not configured"


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_preferences_round_trip(client: AsyncClient, staff_headers):
    resp = await client.get("/api/v1/notifications/preferences", headers=staff_headers)
    assert resp.json()["data"] == {"preferences": []}

    resp = await client.put(
        "/api/v1/notifications/preferences",
        json={"preferences": [
            {"notification_type": "DEADLINE_REMINDER", "frequency_preference": "DAILY_DIGEST"},
        ]},
        headers=staff_headers,
    )
    assert resp.status_code == 200

    resp = await client.put(
        "/api/v1/notifications/preferences",
        json={"preferences": [
            {"notification_type": "ALL", "channel_preference": "EMAIL_ONLY"},
        ]},
        headers=staff_headers,
    )
    stored = {p["notification_type"]: p for p in resp.json()["data"]["preferences"]}
    assert stored["DEADLINE_REMINDER"]["frequency_preference"] == "DAILY_DIGEST"
    assert stored["ALL"]["channel_preference"] == "EMAIL_ONLY"


@pytest.mark.asyncio
async def test_preferences_validation(client: AsyncClient, staff_headers):
    resp = await client.put(
        "/api/v1/notifications/preferences",
        json={"preferences": [{"notification_type": "X", "channel_preference": "PIGEON"}]},
        headers=staff_headers,
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_template_versions_and_rollback(client: AsyncClient, owner_headers):
    resp = await client.get("/api/v1/notification-templates/AUDIT_PACK_READY", headers=owner_headers)
    assert resp.status_code == 404

    for subject in ("Pack ready", "Your {{company_name}} pack is ready"):
        resp = await client.post(
            "/api/v1/notification-templates/AUDIT_PACK_READY/versions",
            json={"subject_template": subject, "body_text_template": "{{body_text}}"},
            headers=owner_headers,
        )
        assert resp.status_code == 201
    assert resp.json()["data"]["version"] == 2

    resp = await client.get("/api/v1/notification-templates/AUDIT_PACK_READY", headers=owner_headers)
    assert resp.json()["data"]["version"] == 2

    resp = await client.post(
        "/api/v1/notification-templates/AUDIT_PACK_READY/rollback",
        json={"version": 1},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["is_active"] is True

    resp = await client.get(
        "/api/v1/notification-templates/AUDIT_PACK_READY/versions", headers=owner_headers
    )
    versions = {t["version"]: t["is_active"] for t in resp.json()["data"]}
    assert versions == {1: True, 2: False}

    resp = await client.post(
        "/api/v1/notification-templates/AUDIT_PACK_READY/rollback",
        json={"version": 9},
        headers=owner_headers,
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_templates_manager_only(client: AsyncClient, staff_headers):
    resp = await client.get("/api/v1/notification-templates/AUDIT_PACK_READY/versions", headers=staff_headers)
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_resend_webhook(client: AsyncClient, db_session, company, owner):
    notification = await create_notification(
        db_session,
        company_id=company.id,
        user_id=owner.id,
        notification_type="DEADLINE_REMINDER",
    )
    notification.status = NotificationStatus.SENT
    notification.delivery_provider_id = "msg_123"
    await db_session.commit()

    resp = await client.post(
        "/api/v1/webhooks/resend",
        json=[
            {"type": "email.delivered", "data": {"email_id": "msg_123"}},
            {"type": "email.delivered", "data": {"email_id": "msg_unknown"}},
        ],
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {"received": True, "processed": 1}

    await db_session.refresh(notification)
    assert notification.status == NotificationStatus.DELIVERED
    assert notification.delivered_at is not None


@pytest.mark.asyncio
async def test_resend_webhook_invalid_json(client: AsyncClient):
    resp = await client.post(
        "/api/v1/webhooks/resend",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Invalid JSON payload"
