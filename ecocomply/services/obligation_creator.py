"""
Turns LLM extraction output into obligation rows.

For every extracted obligation:
  1. validate (needs some text, a known category, confidence in [0, 1])
  2. skip near-duplicates of obligations already on the document
     (word-set Jaccard similarity ≥ 0.8)
  3. insert the obligation; low-confidence rows land in PENDING_REVIEW
  4. add a schedule for recurring frequencies, a first deadline, and a
     review-queue item for low-confidence extractions
"""
from __future__ import annotations

import dataclasses
import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.models.database_models import (
    Deadline,
    Document,
    Frequency,
    Obligation,
    ObligationCategory,
    ReviewQueueItem,
    ReviewStatus,
    Schedule,
)
from ecocomply.services.llm_extractor import ExtractionResult
from ecocomply.utils.helpers import add_months, jaccard_similarity, utcnow

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.7
DUPLICATE_SIMILARITY_THRESHOLD = 0.8
TITLE_MAX_LENGTH = 50

NON_RECURRING = frozenset({Frequency.ONE_TIME.value, Frequency.EVENT_TRIGGERED.value})

_VALID_CATEGORIES = frozenset(c.value for c in ObligationCategory)

# Applied in order, each against the result of the previous one
_LEGAL_PREFIXES = [
    re.compile(r"^The operator shall\s+", re.IGNORECASE),
    re.compile(r"^The site operator shall\s+", re.IGNORECASE),
    re.compile(r"^The permit holder shall\s+", re.IGNORECASE),
    re.compile(r"^The licensee shall\s+", re.IGNORECASE),
    re.compile(r"^The operator is only authorised to\s+", re.IGNORECASE),
    re.compile(r"^The activities shall\s+", re.IGNORECASE),
    re.compile(r"^Activities shall\s+", re.IGNORECASE),
    re.compile(r"^Waste shall\s+", re.IGNORECASE),
    re.compile(r"^Emissions shall\s+", re.IGNORECASE),
    re.compile(r"^Records shall\s+", re.IGNORECASE),
    re.compile(r"^Monitoring shall\s+", re.IGNORECASE),
    re.compile(r"^For the following activities.*?\.\s*", re.IGNORECASE),
]


@dataclasses.dataclass
class CreationSummary:
    created: int = 0
    schedules_created: int = 0
    deadlines_created: int = 0
    review_items_created: int = 0
    duplicates_skipped: int = 0
    invalid: int = 0
    errors: List[str] = dataclasses.field(default_factory=list)
    obligation_ids: List[str] = dataclasses.field(default_factory=list)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def clean_obligation_title(text: Optional[str]) -> str:
    """
    Short display title from legal condition text.

    "The operator shall maintain records of all waste transfers, ..."
    → "Maintain records of all waste transfers"
    """
    if not text or not text.strip():
        return "Untitled Obligation"

    cleaned = text.strip()
    for prefix in _LEGAL_PREFIXES:
        cleaned = prefix.sub("", cleaned)
    cleaned = cleaned.strip()

    title = cleaned
    first_clause = re.split(r"[.;,]", cleaned)[0].strip()
    if first_clause:
        title = first_clause

    if len(title) > TITLE_MAX_LENGTH:
        words = title[: TITLE_MAX_LENGTH - 3].split(" ")
        words.pop()
        title = " ".join(words) + "..."

    if not title:
        return "Untitled Obligation"
    return title[0].upper() + title[1:]


def validate_extracted_obligation(item: Dict[str, Any]) -> bool:
    if not (item.get("title") or item.get("description") or item.get("text")):
        return False
    category = item.get("category")
    if category and category not in _VALID_CATEGORIES:
        return False
    confidence = item.get("confidence")
    if confidence is not None:
        try:
            if not 0.0 <= float(confidence) <= 1.0:
                return False
        except (TypeError, ValueError):
            return False
    return True


def is_duplicate(text: str, existing_texts: List[str]) -> bool:
    return any(
        jaccard_similarity(text, existing) >= DUPLICATE_SIMILARITY_THRESHOLD
        for existing in existing_texts
    )


def next_due_date(frequency: Optional[str], start: date) -> Optional[date]:
    """First due date implied by a recurring frequency."""
    if frequency == Frequency.DAILY.value:
        return start + timedelta(days=1)
    if frequency == Frequency.WEEKLY.value:
        return start + timedelta(days=7)
    if frequency == Frequency.MONTHLY.value:
        return add_months(start, 1)
    if frequency == Frequency.QUARTERLY.value:
        return add_months(start, 3)
    if frequency == Frequency.ANNUAL.value:
        return add_months(start, 12)
    if frequency == Frequency.CONTINUOUS.value:
        return start
    return None


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

async def create_obligations_from_extraction(
    document: Document,
    result: ExtractionResult,
    user_id: Optional[str],
    db: AsyncSession,
) -> CreationSummary:
    """Persist every valid, non-duplicate obligation in *result* for *document*."""
    summary = CreationSummary()

    existing_rows = await db.execute(
        select(Obligation.original_text, Obligation.obligation_description).where(
            Obligation.document_id == document.id,
            Obligation.deleted_at.is_(None),
        )
    )
    existing_texts = [
        text for row in existing_rows.all() for text in row if text
    ]
    today = utcnow().date()

    for item in result.obligations:
        if not validate_extracted_obligation(item):
            summary.invalid += 1
            summary.errors.append(f"Invalid obligation: {item.get('title') or 'Unknown'}")
            continue

        text = item.get("description") or item.get("title") or item.get("text")
        if is_duplicate(text, existing_texts):
            summary.duplicates_skipped += 1
            continue

        confidence = float(item.get("confidence", LOW_CONFIDENCE_THRESHOLD))
        low_confidence = confidence < LOW_CONFIDENCE_THRESHOLD
        frequency = item.get("frequency")
        deadline_date = date.fromisoformat(item["deadline_date"]) if item.get("deadline_date") else None

        obligation = Obligation(
            company_id=document.company_id,
            site_id=document.site_id,
            document_id=document.id,
            condition_reference=item.get("condition_reference"),
            obligation_title=clean_obligation_title(item.get("title") or text),
            obligation_description=item.get("description") or None,
            original_text=text,
            summary=item.get("title") or None,
            category=item.get("category") or ObligationCategory.OPERATIONAL.value,
            frequency=frequency,
            deadline_date=deadline_date,
            status="PENDING",
            review_status=(
                ReviewStatus.PENDING_REVIEW if low_confidence else ReviewStatus.AUTO_CONFIRMED
            ),
            is_subjective=bool(item.get("is_subjective")),
            is_improvement=bool(item.get("is_improvement")),
            page_reference=item.get("page_number"),
            confidence_score=confidence,
            suggested_evidence_types=item.get("suggested_evidence_types") or [],
            version_number=1,
            version_history=[],
        )
        db.add(obligation)
        await db.flush()
        existing_texts.append(text)
        summary.created += 1
        summary.obligation_ids.append(obligation.id)

        schedule: Optional[Schedule] = None
        if frequency and frequency not in NON_RECURRING:
            schedule = Schedule(
                obligation_id=obligation.id,
                frequency=frequency,
                base_date=today,
                next_due_date=next_due_date(frequency, today),
                is_active=True,
            )
            db.add(schedule)
            await db.flush()
            summary.schedules_created += 1

        due = deadline_date or (
            next_due_date(frequency, today) if frequency not in NON_RECURRING else None
        )
        if due is not None:
            db.add(Deadline(
                obligation_id=obligation.id,
                schedule_id=schedule.id if schedule else None,
                company_id=document.company_id,
                site_id=document.site_id,
                due_date=due,
                status="PENDING",
            ))
            summary.deadlines_created += 1

        if low_confidence:
            db.add(ReviewQueueItem(
                company_id=document.company_id,
                site_id=document.site_id,
                document_id=document.id,
                obligation_id=obligation.id,
                review_type="LOW_CONFIDENCE_EXTRACTION",
                is_blocking=False,
                priority=1,
            ))
            summary.review_items_created += 1

    await db.flush()
    logger.info(
        "create_obligations: document=%s user=%s created=%d duplicates=%d invalid=%d",
        document.id,
        user_id,
        summary.created,
        summary.duplicates_skipped,
        summary.invalid,
    )
    return summary
