"""
Document processing pipeline: stored file → text → obligations.

Public API
----------
process_document(document_id, db)
    → ProcessingResult
    parse → rule library → LLM extraction → obligation creation →
    pattern discovery → extraction log.
    Failures are recorded on the document (extraction_status=FAILED)
    rather than raised.

run_document_extraction(document_id)
    Background-job entry point; opens its own session.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.database import AsyncSessionLocal
from ecocomply.models.database_models import (
    Document,
    ExtractionLog,
    ExtractionStatus,
    Obligation,
    ReviewStatus,
    Site,
)
from ecocomply.services.cost_calculator import MODEL_PRICING, calculate_cost
from ecocomply.services.document_parser import DocumentParser
from ecocomply.services.llm_extractor import ExtractionResult, ObligationExtractor
from ecocomply.services.obligation_creator import create_obligations_from_extraction
from ecocomply.services.rule_library import (
    join_conditions,
    load_patterns,
    match_conditions,
    match_to_obligation,
    record_pattern_candidates,
    record_pattern_usage,
    split_conditions,
)
from ecocomply.services.storage import get_storage

logger = logging.getLogger(__name__)

EXTRACTION_JOB = "document-extraction"


@dataclasses.dataclass
class ProcessingResult:
    document_id: str
    success: bool
    obligations_created: int = 0
    duplicates_skipped: int = 0
    rule_library_hits: int = 0
    pattern_candidates: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0
    processing_time_ms: int = 0
    errors: List[str] = dataclasses.field(default_factory=list)


async def process_document(
    document_id: str,
    db: AsyncSession,
    parser: Optional[DocumentParser] = None,
    extractor: Optional[ObligationExtractor] = None,
) -> ProcessingResult:
    """
    Run the full extraction for one document and commit the outcome.

    Steps
    -----
    1. Load the document (must not be soft-deleted).
    2. Parse the stored file; keep extracted_text and page_count.
    3. Match conditions against approved rule-library patterns.
    4. Extract obligations from the unmatched text with the LLM.
    5. Create obligations, schedules, deadlines and review items.
    6. Record pattern candidates from confident LLM obligations.
    7. Write an extraction_logs row with the estimated cost.
    8. Mark the document COMPLETED, or FAILED with extraction_error.
    """
    t0 = time.monotonic()
    parser = parser or DocumentParser()
    extractor = extractor or ObligationExtractor()

    document = (
        await db.execute(
            select(Document).where(Document.id == document_id, Document.deleted_at.is_(None))
        )
    ).scalar_one_or_none()
    if document is None:
        raise ValueError(f"Document {document_id} not found.")

    result = ProcessingResult(document_id=document_id, success=False)
    document.extraction_status = ExtractionStatus.PROCESSING
    document.extraction_error = None
    await db.commit()

    try:
        # ---- Step 1: parse ----
        path = get_storage().resolve(document.storage_path)
        parsed = await parser.parse_document(
            path, Path(document.original_filename).suffix or ".pdf"
        )
        document.extracted_text = parsed.full_text
        document.page_count = parsed.metadata.get("page_count")
        logger.info(
            "process_document: id=%s parsed %s page(s), %d words",
            document_id,
            document.page_count,
            parsed.metadata.get("word_count", 0),
        )

        # ---- Step 2: rule library ----
        site = await db.get(Site, document.site_id)
        regulator = site.regulator if site else None
        document_type = getattr(document.document_type, "value", document.document_type)
        patterns = await load_patterns(db, document.company_id, regulator, document_type)
        matches, unmatched = match_conditions(split_conditions(parsed.full_text), patterns)
        library_obligations = [match_to_obligation(m) for m in matches]
        result.rule_library_hits = len(matches)
        if matches:
            await record_pattern_usage(db, matches)
            logger.info(
                "process_document: id=%s %d condition(s) matched the rule library",
                document_id,
                len(matches),
            )

        # ---- Step 3: extract the rest ----
        remaining = join_conditions(unmatched) if patterns else parsed.full_text
        if remaining.strip() or not library_obligations:
            extraction = await extractor.extract_obligations(
                remaining,
                document_type,
                regulator=regulator,
                permit_reference=document.reference_number,
            )
        else:
            extraction = ExtractionResult(obligations=[], metadata={})
        result.errors.extend(extraction.errors)
        result.input_tokens = extraction.input_tokens
        result.output_tokens = extraction.output_tokens

        if extraction.segments_processed == 0 and not library_obligations:
            raise RuntimeError(
                extraction.errors[0] if extraction.errors else "Extraction produced no result"
            )

        if not document.reference_number and extraction.metadata.get("permit_reference"):
            document.reference_number = str(extraction.metadata["permit_reference"])[:100]

        # ---- Step 4: create obligations ----
        llm_obligations = extraction.obligations
        extraction.obligations = library_obligations + llm_obligations
        summary = await create_obligations_from_extraction(
            document, extraction, document.uploaded_by, db
        )
        result.obligations_created = summary.created
        result.duplicates_skipped = summary.duplicates_skipped
        result.errors.extend(summary.errors)

        # ---- Step 5: pattern discovery ----
        library_texts = {o["description"] for o in library_obligations}
        if summary.obligation_ids and llm_obligations:
            created = (
                await db.execute(
                    select(Obligation).where(
                        Obligation.id.in_(summary.obligation_ids),
                        Obligation.review_status == ReviewStatus.AUTO_CONFIRMED,
                    )
                )
            ).scalars().all()
            result.pattern_candidates = await record_pattern_candidates(
                db,
                document.company_id,
                [o for o in created if o.original_text not in library_texts],
                regulator=regulator,
                document_type=document_type,
            )

        # ---- Step 6: log usage ----
        model = extractor.model if extractor.model in MODEL_PRICING else "gpt-4o"
        cost = calculate_cost(extraction.input_tokens, extraction.output_tokens, model)
        result.estimated_cost = cost.total_cost
        result.processing_time_ms = int((time.monotonic() - t0) * 1000)
        db.add(ExtractionLog(
            document_id=document.id,
            company_id=document.company_id,
            model_identifier=extractor.model,
            input_tokens=extraction.input_tokens,
            output_tokens=extraction.output_tokens,
            estimated_cost=cost.total_cost,
            obligations_extracted=summary.created,
            rule_library_hits=result.rule_library_hits,
            processing_time_ms=result.processing_time_ms,
            errors=result.errors or None,
        ))

        document.extraction_status = ExtractionStatus.COMPLETED
        await db.commit()
        result.success = True
        logger.info(
            "process_document: id=%s completed — %d obligations, %d duplicates, $%.4f",
            document_id,
            summary.created,
            summary.duplicates_skipped,
            cost.total_cost,
        )
    except Exception as exc:
        logger.error("process_document: id=%s failed: %s", document_id, exc, exc_info=True)
        await db.rollback()
        document = await db.get(Document, document_id)
        if document is not None:
            document.extraction_status = ExtractionStatus.FAILED
            document.extraction_error = str(exc)[:1000]
            await db.commit()
        result.errors.append(str(exc))
        result.processing_time_ms = int((time.monotonic() - t0) * 1000)

    return result


async def run_document_extraction(document_id: str) -> ProcessingResult:
    async with AsyncSessionLocal() as db:
        return await process_document(document_id, db)
