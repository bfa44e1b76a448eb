"""Seed-data helpers shared by the test modules."""
from __future__ import annotations

from datetime import date
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.dependencies.auth import create_access_token, hash_password
from ecocomply.models.database_models import (
    AuditPack,
    Company,
    Document,
    DocumentType,
    EvidenceItem,
    ExtractionStatus,
    Frequency,
    Obligation,
    ObligationCategory,
    ObligationEvidenceLink,
    PackStatus,
    PackType,
    ReviewStatus,
    Site,
    User,
    UserRole,
)
from ecocomply.services.pack_verification import generate_content_hash
from ecocomply.services.storage import DOCUMENTS_BUCKET, EVIDENCE_BUCKET, PACKS_BUCKET, get_storage

TEST_PASSWORD = "correct-horse-battery"


def dummy_pdf() -> bytes:
    """Return minimal valid PDF bytes (1 blank page)."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
        b"2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj\n"
        b"3 0 obj<</Type/Page/MediaBox[0 0 612 792]/Parent 2 0 R>>endobj\n"
        b"xref\n0 4\n"
        b"0000000000 65535 f \n"
        b"0000000009 00000 n \n"
        b"0000000058 00000 n \n"
        b"0000000115 00000 n \n"
        b"trailer<</Size 4/Root 1 0 R>>\n"
        b"startxref\n190\n%%EOF\n"
    )


async def make_user(
    db: AsyncSession,
    company: Company,
    email: str,
    role: UserRole,
    full_name: str = "Test User",
) -> User:
    user = User(
        company_id=company.id,
        email=email,
        full_name=full_name,
        password_hash=hash_password(TEST_PASSWORD),
        roles=[role.value],
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def bearer(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


async def make_site(db: AsyncSession, company: Company, name: str = "North Site") -> Site:
    site = Site(company_id=company.id, name=name)
    db.add(site)
    await db.commit()
    await db.refresh(site)
    return site


async def make_document(
    db: AsyncSession,
    site: Site,
    title: str = "Permit EPR/AB1234",
    extraction_status: ExtractionStatus = ExtractionStatus.PENDING,
    content: Optional[bytes] = None,
) -> Document:
    stored = await get_storage().save_bytes(DOCUMENTS_BUCKET, content or dummy_pdf(), ".pdf")
    document = Document(
        company_id=site.company_id,
        site_id=site.id,
        document_type=DocumentType.ENVIRONMENTAL_PERMIT,
        title=title,
        original_filename="permit.pdf",
        storage_path=stored.path,
        file_size_bytes=stored.size,
        mime_type="application/pdf",
        extraction_status=extraction_status,
        metadata_json={"file_hash": stored.sha256},
    )
    db.add(document)
    await db.commit()
    await db.refresh(document)
    return document


async def make_obligation(
    db: AsyncSession,
    document: Document,
    title: str = "Monitor emissions to air",
    status: str = "PENDING",
    category: ObligationCategory = ObligationCategory.MONITORING,
    frequency: Optional[Frequency] = Frequency.MONTHLY,
    deadline_date: Optional[date] = None,
    condition_reference: Optional[str] = "3.1.1",
) -> Obligation:
    obligation = Obligation(
        company_id=document.company_id,
        site_id=document.site_id,
        document_id=document.id,
        condition_reference=condition_reference,
        obligation_title=title,
        obligation_description=f"The operator shall {title.lower()}.",
        original_text=f"The operator shall {title.lower()}.",
        category=category,
        frequency=frequency,
        deadline_date=deadline_date,
        status=status,
        review_status=ReviewStatus.AUTO_CONFIRMED,
        confidence_score=0.9,
        version_number=1,
        version_history=[],
    )
    db.add(obligation)
    await db.commit()
    await db.refresh(obligation)
    return obligation


async def make_evidence(
    db: AsyncSession,
    obligation: Obligation,
    file_name: str = "monitoring-report.pdf",
    link: bool = True,
    site_id: Optional[str] = None,
) -> EvidenceItem:
    content = dummy_pdf()
    stored = await get_storage().save_bytes(EVIDENCE_BUCKET, content, ".pdf")
    evidence = EvidenceItem(
        company_id=obligation.company_id,
        site_id=site_id or obligation.site_id,
        file_name=file_name,
        file_type="PDF",
        file_size=stored.size,
        mime_type="application/pdf",
        storage_path=stored.path,
        file_hash=stored.sha256,
        compliance_period="Q1-2026",
    )
    db.add(evidence)
    await db.flush()
    if link:
        db.add(ObligationEvidenceLink(
            obligation_id=obligation.id,
            evidence_id=evidence.id,
            compliance_period="Q1-2026",
        ))
    await db.commit()
    await db.refresh(evidence)
    return evidence


async def make_pack(
    db: AsyncSession,
    site: Site,
    user: Optional[User] = None,
    status: PackStatus = PackStatus.COMPLETED,
    pack_type: PackType = PackType.AUDIT_PACK,
) -> AuditPack:
    """A pack with a stored PDF and content hash (unless still GENERATING)."""
    pack = AuditPack(
        company_id=site.company_id,
        site_id=site.id,
        pack_type=pack_type,
        title="Audit Pack - 01/03/2026",
        status=status,
        date_range_start=date(2025, 3, 1),
        date_range_end=date(2026, 3, 1),
        generated_by=user.id if user else None,
    )
    if status != PackStatus.GENERATING:
        content = dummy_pdf()
        stored = await get_storage().save_bytes(PACKS_BUCKET, content, ".pdf")
        pack.storage_path = stored.path
        pack.file_size_bytes = stored.size
        pack.content_hash = generate_content_hash(content)
    db.add(pack)
    await db.commit()
    await db.refresh(pack)
    return pack
