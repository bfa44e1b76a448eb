"""
Audit pack PDF generation.

Public API
----------
generate_pack(pack_id, db)
    collect data → render PDF → store under the ``packs`` bucket →
    record verification hash → queue a ``{PACK_TYPE}_READY`` notification.
    On failure the pack is marked FAILED with ``error_message`` and the
    exception is re-raised so the job is counted as failed.

run_pack_generation(pack_id)
    Background-job entry point; opens its own session.
"""
from __future__ import annotations

import dataclasses
import logging
import textwrap
from datetime import date
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import AsyncSessionLocal
from ecocomply.models.database_models import (
    AuditPack,
    Company,
    EvidenceItem,
    NotificationChannel,
    Obligation,
    ObligationEvidenceLink,
    PackStatus,
    Site,
    User,
)
from ecocomply.services.notification_service import create_notification
from ecocomply.services.pack_verification import generate_content_hash, store_verification
from ecocomply.services.storage import PACKS_BUCKET, get_storage
from ecocomply.utils.helpers import utcnow

logger = logging.getLogger(__name__)

PACK_GENERATION_JOB = "pack-generation"

# Used in pack titles: "Audit Pack - 01/02/2025"
PACK_TYPE_LABELS: Dict[str, str] = {
    "AUDIT_PACK": "Audit Pack",
    "REGULATOR_INSPECTION": "Regulator Inspection Pack",
    "TENDER_CLIENT_ASSURANCE": "Tender/Client Assurance Pack",
    "BOARD_MULTI_SITE_RISK": "Board Multi-Site Risk Pack",
    "INSURER_BROKER": "Insurer/Broker Pack",
}

# Printed on the PDF cover and in notifications
PACK_TYPE_NAMES: Dict[str, str] = {
    "AUDIT_PACK": "Audit Pack",
    "REGULATOR_INSPECTION": "Regulator Inspection Pack",
    "TENDER_CLIENT_ASSURANCE": "Tender Client Assurance Pack",
    "BOARD_MULTI_SITE_RISK": "Board Multi-Site Risk Pack",
    "INSURER_BROKER": "Insurer Broker Pack",
}

# A4 in points
PAGE_WIDTH, PAGE_HEIGHT = 595, 842
MARGIN = 50
BODY_WIDTH_CHARS = 95


@dataclasses.dataclass
class PackEvidence:
    id: str
    file_name: str
    uploaded_at: Optional[date]


@dataclasses.dataclass
class PackObligation:
    id: str
    title: str
    summary: Optional[str]
    status: str
    category: str
    deadline_date: Optional[date]
    condition_reference: Optional[str]
    evidence: List[PackEvidence] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class PackData:
    pack_type: str
    company_name: str
    site_name: Optional[str]
    date_range_start: Optional[date]
    date_range_end: Optional[date]
    obligations: List[PackObligation]

    @property
    def completed(self) -> int:
        return sum(1 for o in self.obligations if o.status == "COMPLETED")

    @property
    def completion_rate(self) -> float:
        total = len(self.obligations)
        return (self.completed / total) * 100 if total else 0.0

    @property
    def evidence_ids(self) -> set:
        return {e.id for o in self.obligations for e in o.evidence}


def _value(enum_or_str: Any) -> Any:
    return getattr(enum_or_str, "value", enum_or_str)


# ---------------------------------------------------------------------------
# Data collection
# ---------------------------------------------------------------------------

async def collect_pack_data(pack: AuditPack, db: AsyncSession) -> PackData:
    """Company, site, and in-scope obligations with their active evidence."""
    company = await db.get(Company, pack.company_id)
    site = await db.get(Site, pack.site_id) if pack.site_id else None

    stmt = select(Obligation).where(
        Obligation.company_id == pack.company_id,
        Obligation.deleted_at.is_(None),
    )
    if pack.site_id:
        stmt = stmt.where(Obligation.site_id == pack.site_id)
    if pack.document_id:
        stmt = stmt.where(Obligation.document_id == pack.document_id)
    if pack.date_range_start and pack.date_range_end:
        # Undated obligations fall outside any date range
        stmt = stmt.where(
            Obligation.deadline_date >= pack.date_range_start,
            Obligation.deadline_date <= pack.date_range_end,
        )

    filters = pack.filters or {}
    if filters.get("status"):
        stmt = stmt.where(Obligation.status.in_(filters["status"]))
    if filters.get("category"):
        stmt = stmt.where(Obligation.category.in_(filters["category"]))

    obligations = (
        await db.execute(stmt.order_by(Obligation.condition_reference, Obligation.created_at))
    ).scalars().all()

    evidence_by_obligation: Dict[str, List[PackEvidence]] = {}
    if obligations:
        rows = await db.execute(
            select(ObligationEvidenceLink.obligation_id, EvidenceItem)
            .join(EvidenceItem, EvidenceItem.id == ObligationEvidenceLink.evidence_id)
            .where(
                ObligationEvidenceLink.obligation_id.in_([o.id for o in obligations]),
                ObligationEvidenceLink.unlinked_at.is_(None),
                EvidenceItem.is_archived.is_(False),
            )
            .order_by(EvidenceItem.created_at)
        )
        for obligation_id, item in rows.all():
            evidence_by_obligation.setdefault(obligation_id, []).append(PackEvidence(
                id=item.id,
                file_name=item.file_name,
                uploaded_at=item.created_at.date() if item.created_at else None,
            ))

    return PackData(
        pack_type=_value(pack.pack_type),
        company_name=company.name if company else "Company Name",
        site_name=site.name if site else None,
        date_range_start=pack.date_range_start,
        date_range_end=pack.date_range_end,
        obligations=[
            PackObligation(
                id=o.id,
                title=o.obligation_title,
                summary=o.summary,
                status=o.status,
                category=_value(o.category),
                deadline_date=o.deadline_date,
                condition_reference=o.condition_reference,
                evidence=evidence_by_obligation.get(o.id, []),
            )
            for o in obligations
        ],
    )


# ---------------------------------------------------------------------------
# PDF rendering
# ---------------------------------------------------------------------------

class _PdfWriter:
    """Top-to-bottom text layout over PyMuPDF pages."""

    def __init__(self) -> None:
        self.doc = fitz.open()
        self.page: Optional[fitz.Page] = None
        self.y = 0.0
        self.new_page()

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        self.y = MARGIN

    def line(
        self,
        text: str,
        size: float = 10,
        centered: bool = False,
        color: tuple = (0, 0, 0),
        font: str = "helv",
    ) -> None:
        width_chars = int(BODY_WIDTH_CHARS * 10 / size)
        for chunk in textwrap.wrap(text, width_chars) or [""]:
            if self.y + size > PAGE_HEIGHT - MARGIN:
                self.new_page()
            x = MARGIN
            if centered:
                x = (PAGE_WIDTH - fitz.get_text_length(chunk, fontname=font, fontsize=size)) / 2
            self.page.insert_text(
                (x, self.y + size), chunk, fontsize=size, fontname=font, color=color
            )
            self.y += size * 1.4

    def gap(self, lines: float = 1) -> None:
        self.y += 12 * lines

    def to_bytes(self) -> bytes:
        try:
            return self.doc.tobytes(garbage=3, deflate=True)
        finally:
            self.doc.close()


def render_pack_pdf(data: PackData, generated_on: Optional[date] = None) -> bytes:
    """Cover page, summary dashboard, and one section per obligation."""
    generated_on = generated_on or utcnow().date()
    pdf = _PdfWriter()

    # ---- Cover ----
    pdf.gap(8)
    pdf.line(PACK_TYPE_NAMES.get(data.pack_type, data.pack_type), size=24, centered=True, font="hebo")
    pdf.gap()
    pdf.line(data.company_name, size=16, centered=True)
    if data.site_name:
        pdf.line(data.site_name, size=14, centered=True)
    pdf.gap()
    pdf.line(f"Generated: {generated_on.strftime('%d/%m/%Y')}", size=12, centered=True)
    if data.date_range_start and data.date_range_end:
        pdf.line(
            f"Period: {data.date_range_start.isoformat()} to {data.date_range_end.isoformat()}",
            size=12,
            centered=True,
        )

    # ---- Summary dashboard ----
    pdf.new_page()
    total = len(data.obligations)
    pdf.line("Summary Dashboard", size=18, font="hebo")
    pdf.gap()
    pdf.line(f"Total Obligations: {total}", size=12)
    pdf.line(f"Completed: {data.completed} ({data.completion_rate:.1f}%)", size=12)
    pdf.line(f"Pending: {total - data.completed}", size=12)

    # ---- Obligations ----
    pdf.new_page()
    pdf.line("Obligations", size=18, font="hebo")
    pdf.gap()
    for obligation in data.obligations:
        pdf.line(obligation.summary or obligation.title[:100], size=14, font="hebo")
        pdf.gap(0.5)
        pdf.line(f"Status: {obligation.status}")
        pdf.line(f"Category: {obligation.category}")
        if obligation.deadline_date:
            pdf.line(f"Deadline: {obligation.deadline_date.isoformat()}")
        if obligation.condition_reference:
            pdf.line(f"Reference: {obligation.condition_reference}")
        pdf.gap(0.5)
        if obligation.evidence:
            pdf.line("Evidence:", size=12, font="hebo")
            for evidence in obligation.evidence:
                uploaded = evidence.uploaded_at.isoformat() if evidence.uploaded_at else "unknown"
                pdf.line(f"- {evidence.file_name} ({uploaded})")
        else:
            pdf.line("No evidence linked", color=(1, 0, 0))
        pdf.gap()

    return pdf.to_bytes()


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

async def generate_pack(pack_id: str, db: AsyncSession) -> AuditPack:
    pack = await db.get(AuditPack, pack_id)
    if pack is None:
        raise ValueError(f"Pack not found: {pack_id}")

    pack_type = _value(pack.pack_type)
    try:
        data = await collect_pack_data(pack, db)
        pdf_bytes = render_pack_pdf(data)
        stored = await get_storage().save_bytes(PACKS_BUCKET, pdf_bytes, ".pdf")

        pack.status = PackStatus.COMPLETED
        pack.storage_path = stored.path
        pack.file_size_bytes = stored.size
        pack.total_obligations = len(data.obligations)
        pack.total_evidence = len(data.evidence_ids)
        pack.compliance_score = round(data.completion_rate, 1)
        pack.generated_at = utcnow()
        pack.error_message = None
        await store_verification(pack.id, generate_content_hash(pdf_bytes), db)

        name = PACK_TYPE_NAMES.get(pack_type, pack_type)
        recipient = await db.get(User, pack.generated_by) if pack.generated_by else None
        await create_notification(
            db,
            company_id=pack.company_id,
            user_id=pack.generated_by,
            site_id=pack.site_id,
            recipient_email=recipient.email if recipient else None,
            notification_type=f"{pack_type}_READY",
            channel=NotificationChannel.EMAIL,
            subject=f"{name} Ready",
            body_text=f"Your {name} has been generated and is ready for download.",
            entity_type="audit_pack",
            entity_id=pack.id,
        )
        await db.commit()
        logger.info(
            "Pack generation completed: %s (%s) — %d obligations, %s bytes",
            pack_id,
            pack_type,
            pack.total_obligations,
            f"{stored.size:,}",
        )
        return pack
    except Exception as exc:
        logger.error("Pack generation failed: %s: %s", pack_id, exc, exc_info=True)
        await db.rollback()
        failed = await db.get(AuditPack, pack_id)
        if failed is not None:
            failed.status = PackStatus.FAILED
            failed.error_message = str(exc)[:1000] or "Unknown error"
            await db.commit()
        raise


async def run_pack_generation(pack_id: str) -> None:
    async with AsyncSessionLocal() as db:
        await generate_pack(pack_id, db)
