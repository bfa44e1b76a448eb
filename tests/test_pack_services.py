"""Service-level tests for pack generation, signatures and verification."""
from datetime import date

import pytest
from sqlalchemy import select

from ecocomply.models.database_models import Notification, PackStatus, PackType
from ecocomply.services import digital_signature, pack_verification
from ecocomply.services.pack_generator import collect_pack_data, generate_pack, render_pack_pdf
from ecocomply.services.storage import get_storage
from tests.factories import dummy_pdf, make_document, make_evidence, make_obligation, make_pack


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_collect_pack_data_scopes_by_date_range(db_session, site, owner):
    document = await make_document(db_session, site)
    in_range = await make_obligation(
        db_session, document, title="Quarterly sampling", deadline_date=date(2025, 12, 1)
    )
    undated = await make_obligation(
        db_session, document, title="Keep site diary", deadline_date=None, status="COMPLETED"
    )
    await make_obligation(
        db_session, document, title="Annual return", deadline_date=date(2026, 6, 30)
    )
    await make_evidence(db_session, in_range)
    pack = await make_pack(db_session, site, owner, status=PackStatus.GENERATING)

    data = await collect_pack_data(pack, db_session)

    assert {o.id for o in data.obligations} == {in_range.id}
    assert undated.id not in {o.id for o in data.obligations}
    assert data.company_name == "Acme Water Ltd"
    assert data.site_name == "Riverside Works"
    assert data.completed == 0
    assert data.completion_rate == 0.0
    assert len(data.evidence_ids) == 1


@pytest.mark.asyncio
async def test_render_pack_pdf_produces_pdf(db_session, site, owner):
    document = await make_document(db_session, site)
    await make_obligation(db_session, document, deadline_date=date(2025, 9, 30))
    pack = await make_pack(db_session, site, owner, status=PackStatus.GENERATING)

    data = await collect_pack_data(pack, db_session)
    pdf = render_pack_pdf(data, generated_on=date(2026, 3, 1))

    assert pdf.startswith(b"%PDF")


@pytest.mark.asyncio
async def test_generate_pack_completes_and_notifies(db_session, site, owner):
    document = await make_document(db_session, site)
    await make_obligation(db_session, document, deadline_date=date(2025, 9, 30), status="COMPLETED")
    pack = await make_pack(db_session, site, owner, status=PackStatus.GENERATING)

    pack = await generate_pack(pack.id, db_session)

    assert pack.status == PackStatus.COMPLETED
    assert pack.total_obligations == 1
    assert pack.compliance_score == 100.0
    assert pack.content_hash == pack_verification.generate_content_hash(
        await get_storage().read_bytes(pack.storage_path)
    )
    assert pack.metadata_json["verification"]["content_hash"] == pack.content_hash

    notification = (await db_session.execute(select(Notification))).scalar_one()
    assert notification.notification_type == "AUDIT_PACK_READY"
    assert notification.subject == "Audit Pack Ready"
    assert notification.recipient_email == owner.email
    assert notification.entity_id == pack.id


@pytest.mark.asyncio
async def test_generate_unknown_pack(db_session):
    with pytest.raises(ValueError):
        await generate_pack("missing", db_session)


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sign_and_verify_pack(db_session, site, owner):
    pack = await make_pack(db_session, site, owner)

    valid, details = await digital_signature.verify_signature(pack.id, db_session)
    assert valid is False
    assert details.verification_message == "No signatures found for this pack"

    await digital_signature.create_signature(pack.id, digital_signature.INTERNAL, owner.id, db_session)
    await digital_signature.create_signature(
        pack.id, digital_signature.AUDITOR_ATTESTATION, owner.id, db_session
    )

    valid, details = await digital_signature.verify_signature(pack.id, db_session, content=dummy_pdf())
    assert valid is True
    assert details.verification_message == "Pack verified successfully with 2 signature(s)"
    assert details.latest_signature["signature_type"] == "AUDITOR_ATTESTATION"

    valid, details = await digital_signature.verify_signature(pack.id, db_session, content=b"tampered")
    assert valid is False
    assert details.verification_message.startswith("Pack content hash mismatch")

    stats = await digital_signature.get_signature_stats(pack.id, db_session)
    assert stats["total_signatures"] == 2
    assert stats["internal_signatures"] == 1
    assert stats["auditor_signatures"] == 1
    assert await digital_signature.has_auditor_attestation(pack.id, db_session) is True

    chain = await digital_signature.get_signature_chain(pack.id, db_session)
    assert [c["user_name"] for c in chain] == ["Olivia Owner", "Olivia Owner"]


@pytest.mark.asyncio
async def test_sign_distributed_pack_rejected(db_session, site, owner):
    pack = await make_pack(db_session, site, owner, status=PackStatus.DISTRIBUTED)

    with pytest.raises(ValueError, match="Pack must be COMPLETED"):
        await digital_signature.create_signature(pack.id, digital_signature.INTERNAL, owner.id, db_session)


@pytest.mark.asyncio
async def test_forged_signature_fails_verification(db_session, site, owner):
    pack = await make_pack(db_session, site, owner)
    signature = await digital_signature.create_signature(
        pack.id, digital_signature.INTERNAL, owner.id, db_session
    )
    pack.signatures = [{**signature, "signed_by": "someone-else"}]
    await db_session.flush()

    valid, details = await digital_signature.verify_signature(pack.id, db_session)
    assert valid is False
    assert details.verification_message == "Signature hash verification failed"


@pytest.mark.asyncio
async def test_create_signature_rejections(db_session, site, owner):
    pack = await make_pack(db_session, site, owner, status=PackStatus.GENERATING)

    with pytest.raises(ValueError, match="Unknown signature type"):
        await digital_signature.create_signature(pack.id, "NOTARY", owner.id, db_session)
    with pytest.raises(ValueError, match="Pack must be COMPLETED"):
        await digital_signature.create_signature(pack.id, "INTERNAL", owner.id, db_session)
    with pytest.raises(digital_signature.PackNotFoundError):
        await digital_signature.create_signature("missing", "INTERNAL", owner.id, db_session)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_verify_pack_reasons(db_session, site, owner):
    result = await pack_verification.verify_pack("missing", db_session)
    assert result.reason == "Pack not found in database"

    generating = await make_pack(db_session, site, owner, status=PackStatus.GENERATING)
    result = await pack_verification.verify_pack(generating.id, db_session)
    assert result.reason == "Pack is not completed (status: GENERATING)"

    unhashed = await make_pack(db_session, site, owner)
    unhashed.content_hash = None
    await db_session.flush()
    result = await pack_verification.verify_pack(unhashed.id, db_session)
    assert result.reason == "No verification hash stored for this pack"

    pack = await make_pack(db_session, site, owner)
    result = await pack_verification.verify_pack_by_content(pack.id, dummy_pdf(), db_session)
    assert result.is_valid is True
    assert result.pack_details["site_name"] == "Riverside Works"
    assert result.pack_details["generated_by"] == owner.email

    result = await pack_verification.verify_pack(pack.id, db_session, provided_hash="0" * 64)
    assert result.is_valid is False
    assert result.reason.startswith("Content hash mismatch")


@pytest.mark.asyncio
async def test_create_verification_data(db_session, site, owner):
    pack = await make_pack(db_session, site, owner, pack_type=PackType.BOARD_MULTI_SITE_RISK)
    content = b"%PDF-1.4 regenerated"

    data = await pack_verification.create_verification(pack.id, content, db_session)

    assert data.content_hash == pack_verification.generate_content_hash(content)
    assert data.pack_type == "BOARD_MULTI_SITE_RISK"
    assert data.company_name == "Acme Water Ltd"
    assert data.verification_url.endswith(f"/verify-pack/{pack.id}")
    assert data.qr_code_data_url.startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_verification_data_unavailable_until_completed(db_session, site, owner):
    pack = await make_pack(db_session, site, owner, status=PackStatus.GENERATING)
    assert await pack_verification.get_verification_data(pack.id, db_session) is None
