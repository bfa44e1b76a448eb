"""
Rule library: approved obligation patterns matched before the LLM runs, and
discovery of new pattern candidates from confident LLM extractions.

Public API
----------
load_patterns(db, company_id, regulator, document_type)   -> List[RulePattern]
split_conditions(text)                                     -> List[Condition]
match_conditions(conditions, patterns)                     -> (matches, unmatched)
join_conditions(conditions)                                -> str
match_to_obligation(match)                                 -> Dict (extractor shape)
discover_candidates(obligations)                           -> List[CandidateDraft]
record_pattern_candidates(db, company_id, obligations, ...) -> int

A pattern is an APPROVED ``pattern_candidates`` row, either shared
(``company_id`` NULL) or owned by the company.  ``pattern_text`` holds the
primary regex, matched case-insensitively.
"""
from __future__ import annotations

import dataclasses
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecocomply.models.database_models import Obligation, PatternCandidate

logger = logging.getLogger(__name__)

APPROVED = "APPROVED"
PENDING_REVIEW = "PENDING_REVIEW"

MATCH_THRESHOLD = 0.9
SEMANTIC_FLOOR = 0.7
NEGATIVE_PENALTY = 0.15
MAX_CONDITION_CHARS = 1000

MIN_GROUP_SIZE = 3
MIN_MATCH_RATE = 0.9
LENGTH_TOLERANCE = 0.3
MAX_PHRASE_WORDS = 4

_WORD = re.compile(r"[a-z0-9]+")
_CONDITION_REF = re.compile(r"^\s*(?:condition\s+)?(\d+(?:\.\d+)+)\s+", re.IGNORECASE)
_PAGE_MARKER = re.compile(r"^\s*\[Page (\d+)\]\s*")


# ---------------------------------------------------------------------------
# Patterns and matches
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class RulePattern:
    id: str
    regex: str
    category: str
    frequency: Optional[str] = None
    is_subjective: bool = False
    condition_type: str = "STANDARD"
    evidence_types: List[str] = dataclasses.field(default_factory=list)
    regex_variants: List[str] = dataclasses.field(default_factory=list)
    semantic_keywords: List[str] = dataclasses.field(default_factory=list)
    negative_patterns: List[str] = dataclasses.field(default_factory=list)

    @classmethod
    def from_candidate(cls, row: PatternCandidate) -> "RulePattern":
        template = row.extraction_template or {}
        matching = row.matching or {}
        return cls(
            id=row.id,
            regex=row.pattern_text,
            category=getattr(row.category, "value", row.category),
            frequency=template.get("frequency"),
            is_subjective=bool(template.get("is_subjective", False)),
            condition_type=template.get("condition_type") or "STANDARD",
            evidence_types=list(template.get("evidence_types") or []),
            regex_variants=list(matching.get("regex_variants") or []),
            semantic_keywords=list(matching.get("semantic_keywords") or []),
            negative_patterns=list(matching.get("negative_patterns") or []),
        )


@dataclasses.dataclass
class RuleMatch:
    pattern: RulePattern
    score: float
    match_type: str  # regex | combined
    text: str
    page: Optional[int] = None


async def load_patterns(
    db: AsyncSession,
    company_id: str,
    regulator: Optional[str] = None,
    document_type: Optional[str] = None,
) -> List[RulePattern]:
    """Approved patterns applicable to a document of *company_id*."""
    stmt = select(PatternCandidate).where(
        PatternCandidate.status == APPROVED,
        PatternCandidate.category.is_not(None),
        or_(PatternCandidate.company_id.is_(None), PatternCandidate.company_id == company_id),
    )
    if regulator:
        stmt = stmt.where(
            or_(PatternCandidate.regulator.is_(None), PatternCandidate.regulator == regulator)
        )
    if document_type:
        stmt = stmt.where(
            or_(
                PatternCandidate.document_type.is_(None),
                PatternCandidate.document_type == document_type,
            )
        )
    rows = await db.execute(
        stmt.order_by(PatternCandidate.usage_count.desc(), PatternCandidate.created_at.asc())
    )
    return [RulePattern.from_candidate(row) for row in rows.scalars().all()]


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class Condition:
    text: str
    page: Optional[int] = None


def split_conditions(text: str, max_chars: int = MAX_CONDITION_CHARS) -> List[Condition]:
    """
    Split document text into condition-sized pieces: one per paragraph,
    with paragraphs over *max_chars* regrouped by sentence.  ``[Page N]``
    markers set the page of the conditions that follow.
    """
    conditions: List[Condition] = []
    page: Optional[int] = None
    for paragraph in re.split(r"\n\s*\n", text or ""):
        marker = _PAGE_MARKER.match(paragraph)
        if marker:
            page = int(marker.group(1))
            paragraph = paragraph[marker.end():]
        paragraph = " ".join(paragraph.split())
        if not paragraph:
            continue
        if len(paragraph) <= max_chars:
            conditions.append(Condition(paragraph, page))
            continue
        current = ""
        for sentence in re.split(r"(?<=[.!?])\s+", paragraph):
            if current and len(current) + len(sentence) + 1 > max_chars:
                conditions.append(Condition(current, page))
                current = sentence
            else:
                current = f"{current} {sentence}" if current else sentence
        if current:
            conditions.append(Condition(current, page))
    return conditions


def join_conditions(conditions: Sequence[Condition]) -> str:
    """Rebuild text from *conditions*, restoring a marker at each page change."""
    parts: List[str] = []
    page: Optional[int] = None
    for condition in conditions:
        if condition.page is not None and condition.page != page:
            page = condition.page
            parts.append(f"[Page {page}]\n{condition.text}")
        else:
            parts.append(condition.text)
    return "\n\n".join(parts)


def _coverage(matches: Sequence[str], text: str) -> float:
    return min(sum(len(m) for m in matches) / max(len(text), 1), 1.0)


def _findall(regex: str, text: str, pattern_id: str) -> Optional[List[str]]:
    try:
        return [m.group(0) for m in re.finditer(regex, text, re.IGNORECASE)]
    except re.error as exc:
        logger.warning("Invalid regex in pattern %s: %s", pattern_id, exc)
        return None


def regex_score(text: str, pattern: RulePattern) -> float:
    """
    0.85-1.0 for a primary regex hit (scaled by coverage, minus 0.15 per
    negative pattern present), 0.75-0.9 for a variant hit, else 0.
    """
    primary = _findall(pattern.regex, text, pattern.id)
    if primary is None:
        return 0.0
    if primary:
        penalty = sum(
            NEGATIVE_PENALTY
            for negative in pattern.negative_patterns
            if _findall(negative, text, pattern.id)
        )
        return max(0.85 + _coverage(primary, text) * 0.15 - penalty, 0.0)

    for variant in pattern.regex_variants:
        found = _findall(variant, text, pattern.id)
        if found:
            return 0.75 + _coverage(found, text) * 0.15
    return 0.0


def semantic_score(text: str, pattern: RulePattern) -> float:
    if not pattern.semantic_keywords:
        return 0.0
    lowered = text.lower()
    hits = sum(1 for keyword in pattern.semantic_keywords if keyword.lower() in lowered)
    return 0.5 + (hits / len(pattern.semantic_keywords)) * 0.35


def best_match(text: str, patterns: Sequence[RulePattern]) -> Optional[RuleMatch]:
    best: Optional[RuleMatch] = None
    for pattern in patterns:
        score = regex_score(text, pattern)
        match_type = "regex"
        if SEMANTIC_FLOOR <= score < MATCH_THRESHOLD:
            score = score * 0.6 + semantic_score(text, pattern) * 0.4
            match_type = "combined"
        if score >= MATCH_THRESHOLD and (best is None or score > best.score):
            best = RuleMatch(pattern=pattern, score=round(score, 4), match_type=match_type, text=text)
    return best


def match_conditions(
    conditions: Sequence[Condition], patterns: Sequence[RulePattern]
) -> Tuple[List[RuleMatch], List[Condition]]:
    """Partition *conditions* into library matches and conditions left for the LLM."""
    matches: List[RuleMatch] = []
    unmatched: List[Condition] = []
    for condition in conditions:
        match = best_match(condition.text, patterns) if patterns else None
        if match is None:
            unmatched.append(condition)
        else:
            match.page = condition.page
            matches.append(match)
    return matches, unmatched


def match_to_obligation(match: RuleMatch) -> Dict[str, Any]:
    """Render a library match in the same shape the LLM extractor returns."""
    reference = _CONDITION_REF.match(match.text)
    text = match.text[reference.end():] if reference else match.text
    first_sentence = re.split(r"(?<=[.!?])\s+", text, maxsplit=1)[0]
    return {
        "condition_reference": reference.group(1) if reference else None,
        "title": first_sentence[:255],
        "description": text,
        "category": match.pattern.category,
        "frequency": match.pattern.frequency,
        "deadline_date": None,
        "is_subjective": match.pattern.is_subjective,
        "is_improvement": match.pattern.condition_type == "IMPROVEMENT",
        "page_number": match.page,
        "confidence": min(match.score, 1.0),
        "suggested_evidence_types": list(match.pattern.evidence_types),
        "source_pattern_id": match.pattern.id,
    }


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class CandidateDraft:
    regex: str
    match_rate: float
    category: Optional[str]
    template: Dict[str, Any]
    obligation_ids: List[str]

    @property
    def sample_count(self) -> int:
        return len(self.obligation_ids)


def _words(text: str) -> List[str]:
    return _WORD.findall(text.lower())


def group_similar(obligations: Sequence[Obligation]) -> List[List[Obligation]]:
    """Group by category and original text length within 30% of the first member."""
    groups: List[List[Obligation]] = []
    used = set()
    for seed in obligations:
        if seed.id in used:
            continue
        used.add(seed.id)
        group = [seed]
        seed_len = len(seed.original_text or "")
        for other in obligations:
            if other.id in used or other.category != seed.category:
                continue
            if abs(len(other.original_text or "") - seed_len) < seed_len * LENGTH_TOLERANCE:
                group.append(other)
                used.add(other.id)
        groups.append(group)
    return groups


def common_phrases(texts: Sequence[str], limit: int = 10) -> List[str]:
    """Word sequences of 2-4 words present in every text."""
    if not texts:
        return []
    joined = [f" {' '.join(_words(t))} " for t in texts]
    first = _words(texts[0])
    phrases: List[str] = []
    for start in range(len(first) - 1):
        for size in range(2, MAX_PHRASE_WORDS + 1):
            if start + size > len(first):
                break
            phrase = " ".join(first[start:start + size])
            if phrase not in phrases and all(f" {phrase} " in j for j in joined):
                phrases.append(phrase)
    return phrases[:limit]


def phrase_regex(phrase: str) -> str:
    return r"\W+".join(rf"\b{re.escape(word)}\b" for word in phrase.split()) + ".*"


def _match_rate(regex: str, texts: Sequence[str]) -> float:
    hits = sum(1 for t in texts if re.search(regex, t, re.IGNORECASE))
    return hits / len(texts) if texts else 0.0


def _common_template(group: Sequence[Obligation]) -> Dict[str, Any]:
    first = group[0]

    def same(attr: str) -> bool:
        return all(getattr(o, attr) == getattr(first, attr) for o in group)

    frequency = getattr(first.frequency, "value", first.frequency)
    return {
        "frequency": frequency if same("frequency") else None,
        "is_subjective": bool(first.is_subjective) if same("is_subjective") else False,
        "condition_type": "IMPROVEMENT" if first.is_improvement else "STANDARD",
        "evidence_types": list(first.suggested_evidence_types or []),
    }


def discover_candidates(obligations: Sequence[Obligation]) -> List[CandidateDraft]:
    """
    Propose a regex for every group of at least three similar obligations.

    The regex is built from the longest phrase shared by the whole group
    and must match at least 90% of the group's texts.
    """
    drafts: List[CandidateDraft] = []
    for group in group_similar([o for o in obligations if o.original_text]):
        if len(group) < MIN_GROUP_SIZE:
            continue
        texts = [o.original_text for o in group]
        phrases = common_phrases(texts)
        if not phrases:
            continue
        regex = phrase_regex(max(phrases, key=len))
        rate = _match_rate(regex, texts)
        if rate < MIN_MATCH_RATE:
            continue
        first = group[0]
        drafts.append(CandidateDraft(
            regex=regex,
            match_rate=rate,
            category=getattr(first.category, "value", first.category),
            template=_common_template(group),
            obligation_ids=[o.id for o in group],
        ))
    return drafts


async def record_pattern_candidates(
    db: AsyncSession,
    company_id: str,
    obligations: Sequence[Obligation],
    regulator: Optional[str] = None,
    document_type: Optional[str] = None,
) -> int:
    """
    Store discovered candidates as PENDING_REVIEW rows.  A candidate whose
    regex already exists for the company accumulates its samples instead.
    Returns the number of candidates recorded or updated.
    """
    drafts = discover_candidates(obligations)
    for draft in drafts:
        existing = (
            await db.execute(
                select(PatternCandidate).where(
                    PatternCandidate.company_id == company_id,
                    PatternCandidate.pattern_text == draft.regex,
                )
            )
        ).scalars().first()
        if existing is not None:
            existing.sample_count = (existing.sample_count or 0) + draft.sample_count
            existing.source_obligation_ids = list(existing.source_obligation_ids or []) + draft.obligation_ids
            continue
        db.add(PatternCandidate(
            company_id=company_id,
            pattern_text=draft.regex,
            category=draft.category,
            sample_count=draft.sample_count,
            match_rate=draft.match_rate,
            status=PENDING_REVIEW,
            extraction_template=draft.template,
            regulator=regulator,
            document_type=document_type,
            source_obligation_ids=draft.obligation_ids,
        ))
    if drafts:
        logger.info("Recorded %d pattern candidate(s) for company %s", len(drafts), company_id)
    return len(drafts)


async def record_pattern_usage(db: AsyncSession, matches: Sequence[RuleMatch]) -> None:
    counts: Dict[str, int] = {}
    for match in matches:
        counts[match.pattern.id] = counts.get(match.pattern.id, 0) + 1
    for pattern_id, count in counts.items():
        row = await db.get(PatternCandidate, pattern_id)
        if row is not None:
            row.usage_count = (row.usage_count or 0) + count
