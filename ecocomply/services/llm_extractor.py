"""
LLM-based obligation extraction for permits, consents and MCPD registrations.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint
(OPENAI_BASE_URL / OPENAI_MODEL).  Prompts are module-level constants so
they can be tuned without touching logic code.

Public API
----------
ObligationExtractor.extract_obligations(text, document_type, ...) -> ExtractionResult
ObligationExtractor.split_into_segments(text, max_chars)         -> List[str]
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ecocomply.config import settings
from ecocomply.models.database_models import Frequency, ObligationCategory
from ecocomply.services.cost_calculator import check_token_budget, estimate_tokens

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ExtractionResult:
    """Returned by extract_obligations: normalised obligations plus usage."""

    obligations: List[Dict[str, Any]]
    metadata: Dict[str, Any]
    input_tokens: int = 0
    output_tokens: int = 0
    segments_processed: int = 0
    errors: List[str] = dataclasses.field(default_factory=list)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_EXTRACT_SYSTEM_PROMPT = """\
You are an expert UK environmental permit analyst. Extract ALL compliance \
obligations from this {document_label}.

OBLIGATION CATEGORIES:
- MONITORING: Measuring, sampling, testing activities
- REPORTING: Submitting data/reports to regulators
- RECORD_KEEPING: Maintaining logs and documentation
- OPERATIONAL: Day-to-day operational requirements
- MAINTENANCE: Equipment servicing and upkeep

FREQUENCY VALUES:
DAILY, WEEKLY, MONTHLY, QUARTERLY, ANNUAL, ONE_TIME, CONTINUOUS, EVENT_TRIGGERED

SUBJECTIVE PHRASES (always flag is_subjective=true):
"as appropriate", "where necessary", "where practicable", "reasonable measures", \
"adequate steps", "as soon as practicable", "to the satisfaction of", \
"unless otherwise agreed", "appropriate measures", "suitable provision", \
"best endeavours"

EXTRACTION RULES:
1. Extract EVERY numbered condition as a separate obligation
2. Preserve the exact condition reference (e.g. "Condition 2.3.1")
3. Include the page number where the condition appears ([Page N] markers)
4. Give deadline dates in ISO format (YYYY-MM-DD)
5. For improvement conditions set is_improvement=true and extract the deadline
6. Suggest evidence types based on the obligation category
7. Score confidence 0.00-1.00 for each extraction

OUTPUT JSON ONLY:
{{
  "obligations": [
    {{
      "condition_reference": "string",
      "title": "string",
      "description": "string",
      "category": "MONITORING|REPORTING|RECORD_KEEPING|OPERATIONAL|MAINTENANCE",
      "frequency": "DAILY|WEEKLY|MONTHLY|QUARTERLY|ANNUAL|ONE_TIME|CONTINUOUS|EVENT_TRIGGERED",
      "deadline_date": "YYYY-MM-DD or null",
      "is_subjective": false,
      "is_improvement": false,
      "page_number": 1,
      "confidence": 0.0,
      "suggested_evidence_types": ["string"]
    }}
  ],
  "metadata": {{
    "permit_reference": "string or null",
    "regulator": "EA|SEPA|NRW|NIEA or null",
    "extraction_confidence": 0.0
  }}
}}"""

_EXTRACT_USER_PROMPT = """\
Extract all compliance obligations from this document:

DOCUMENT TEXT:
{document_text}

REGULATOR: {regulator}
PERMIT REFERENCE: {permit_reference}"""

_EXTRACT_RETRY_PROMPT = """\
Return ONLY a JSON object of the form {{"obligations": [...]}}. Each obligation \
needs condition_reference, title, description, category (one of MONITORING, \
REPORTING, RECORD_KEEPING, OPERATIONAL, MAINTENANCE), frequency, deadline_date, \
page_number and confidence. No prose, no markdown.

TEXT:
{document_text}"""

_DOCUMENT_LABELS: Dict[str, str] = {
    "ENVIRONMENTAL_PERMIT": "environmental permit",
    "TRADE_EFFLUENT_CONSENT": "trade effluent consent",
    "MCPD_REGISTRATION": "Medium Combustion Plant registration",
}


# ---------------------------------------------------------------------------
# Main service class
# ---------------------------------------------------------------------------

class ObligationExtractor:
    """
    Obligation extraction via an OpenAI-compatible chat completions API.

    Limits concurrency to MAX_CONCURRENT simultaneous LLM calls.
    Retries JSON parsing once with a simpler prompt.
    Documents over the token budget are split on paragraph boundaries.
    """

    MAX_CONCURRENT: int = 2
    MAX_JSON_RETRIES: int = 2
    MAX_OUTPUT_TOKENS: int = 4000
    TEMPERATURE: float = 0.2
    LLM_TIMEOUT: float = float(settings.OPENAI_TIMEOUT)

    VALID_CATEGORIES = frozenset(c.value for c in ObligationCategory)
    VALID_FREQUENCIES = frozenset(f.value for f in Frequency)

    # Class attributes so tests and callers can patch them
    EXTRACT_SYSTEM_PROMPT = _EXTRACT_SYSTEM_PROMPT
    EXTRACT_USER_PROMPT = _EXTRACT_USER_PROMPT
    EXTRACT_RETRY_PROMPT = _EXTRACT_RETRY_PROMPT

    def __init__(self, model: Optional[str] = None) -> None:
        self.base_url = settings.OPENAI_BASE_URL.rstrip("/")
        self.api_key = settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.timeout = httpx.Timeout(self.LLM_TIMEOUT, connect=10.0)
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT)

    # ------------------------------------------------------------------
    # Public extraction
    # ------------------------------------------------------------------

    async def extract_obligations(
        self,
        text: str,
        document_type: str,
        regulator: Optional[str] = None,
        permit_reference: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Extract obligations from the full document text.

        Splits the text when it exceeds the token budget and merges the
        per-segment results.  Never raises for LLM failures; they are
        reported in ``errors``.
        """
        result = ExtractionResult(obligations=[], metadata={})
        if not text or not text.strip():
            result.errors.append("Document has no extractable text")
            return result

        budget = check_token_budget(estimate_tokens(text))
        if budget.fits:
            segments = [text]
        else:
            logger.info(
                "extract_obligations: %d tokens over budget — %s",
                budget.document_tokens,
                budget.recommendation,
            )
            segments = self.split_into_segments(
                text, budget.available_tokens * CHARS_PER_TOKEN
            )

        system_prompt = self.EXTRACT_SYSTEM_PROMPT.format(
            document_label=_DOCUMENT_LABELS.get(document_type, "permit document"),
        )

        for index, segment in enumerate(segments, start=1):
            user_prompt = self.EXTRACT_USER_PROMPT.format(
                document_text=segment,
                regulator=regulator or "Unknown",
                permit_reference=permit_reference or "Unknown",
            )
            retry_prompt = self.EXTRACT_RETRY_PROMPT.format(document_text=segment)

            success, raw, usage = await self._call_llm_json(
                system_prompt, user_prompt, retry_prompt=retry_prompt
            )
            result.input_tokens += usage.get("prompt_tokens", 0)
            result.output_tokens += usage.get("completion_tokens", 0)

            if not success:
                result.errors.append(f"Segment {index}: LLM returned no parseable JSON")
                continue

            result.segments_processed += 1
            items, metadata = self._unwrap(raw)
            for item in items:
                normalised = self._normalise_obligation(item)
                if normalised is not None:
                    result.obligations.append(normalised)
            for key, value in metadata.items():
                if value is not None and key not in result.metadata:
                    result.metadata[key] = value

        logger.info(
            "extract_obligations: %d obligations from %d/%d segment(s), %d in / %d out tokens",
            len(result.obligations),
            result.segments_processed,
            len(segments),
            result.input_tokens,
            result.output_tokens,
        )
        return result

    @staticmethod
    def split_into_segments(text: str, max_chars: int) -> List[str]:
        """
        Split *text* on blank-line paragraph boundaries into pieces of at most
        *max_chars*.  A single paragraph longer than the limit is hard-split.
        """
        if len(text) <= max_chars:
            return [text]

        segments: List[str] = []
        current = ""
        for paragraph in re.split(r"\n\s*\n", text):
            while len(paragraph) > max_chars:
                if current:
                    segments.append(current)
                    current = ""
                segments.append(paragraph[:max_chars])
                paragraph = paragraph[max_chars:]
            candidate = f"{current}\n\n{paragraph}" if current else paragraph
            if len(candidate) > max_chars:
                segments.append(current)
                current = paragraph
            else:
                current = candidate
        if current:
            segments.append(current)
        return segments

    # ------------------------------------------------------------------
    # Normalisation
    # ------------------------------------------------------------------

    @staticmethod
    def _unwrap(raw: Any) -> Tuple[List[Any], Dict[str, Any]]:
        """Accept ``{"obligations": [...], "metadata": {...}}`` or a bare list."""
        if isinstance(raw, dict):
            items = raw.get("obligations", [])
            metadata = raw.get("metadata") or {}
            if not isinstance(items, list):
                items = []
            return items, metadata if isinstance(metadata, dict) else {}
        if isinstance(raw, list):
            return raw, {}
        return [], {}

    def _normalise_obligation(self, item: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(item, dict):
            return None

        title = str(item.get("title") or "").strip()
        description = str(item.get("description") or "").strip()
        if not title and not description:
            return None

        # Unknown categories pass through; the obligation creator rejects them
        category = str(item.get("category") or "").upper().strip()

        frequency = str(item.get("frequency") or "").upper().strip() or None
        if frequency not in self.VALID_FREQUENCIES:
            frequency = None

        page = item.get("page_number")
        try:
            page = int(page) if page is not None else None
        except (TypeError, ValueError):
            page = None

        evidence_types = item.get("suggested_evidence_types") or []
        if not isinstance(evidence_types, list):
            evidence_types = [str(evidence_types)]

        return {
            "condition_reference": str(item.get("condition_reference") or "").strip() or None,
            "title": title,
            "description": description,
            "category": category,
            "frequency": frequency,
            "deadline_date": _parse_iso_date(item.get("deadline_date")),
            "is_subjective": bool(item.get("is_subjective", False)),
            "is_improvement": bool(item.get("is_improvement", False)),
            "page_number": page,
            "confidence": self._clamp(item.get("confidence", 0.7)),
            "suggested_evidence_types": [str(e) for e in evidence_types if e],
        }

    # ------------------------------------------------------------------
    # Core LLM caller
    # ------------------------------------------------------------------

    async def _call_llm(
        self, system_prompt: str, user_prompt: str, max_tokens: int = MAX_OUTPUT_TOKENS
    ) -> Tuple[str, Dict[str, int]]:
        """
        POST to /chat/completions and return ``(content, usage)``.

        Uses semaphore to cap concurrent LLM calls.  Returns an empty string
        on any error (timeout, connection failure, non-200 response).
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(
                        f"{self.base_url}/chat/completions",
                        headers=headers,
                        json={
                            "model": self.model,
                            "messages": [
                                {"role": "system", "content": system_prompt},
                                {"role": "user", "content": user_prompt},
                            ],
                            "max_tokens": max_tokens,
                            "temperature": self.TEMPERATURE,
                            "response_format": {"type": "json_object"},
                        },
                    )

                if resp.status_code == 200:
                    body = resp.json()
                    choices = body.get("choices") or [{}]
                    content = (choices[0].get("message") or {}).get("content") or ""
                    return content, body.get("usage") or {}

                logger.error(
                    "_call_llm: LLM API returned HTTP %d: %s",
                    resp.status_code,
                    resp.text[:300],
                )
                return "", {}

            except httpx.TimeoutException:
                logger.error("_call_llm: request timed out after %.0f s", self.LLM_TIMEOUT)
                return "", {}
            except httpx.HTTPError as exc:
                logger.error("_call_llm: connection error — %s", exc)
                return "", {}
            except ValueError as exc:
                logger.error("_call_llm: malformed API response — %s", exc)
                return "", {}

    async def _call_llm_json(
        self,
        system_prompt: str,
        user_prompt: str,
        retry_prompt: Optional[str] = None,
    ) -> Tuple[bool, Any, Dict[str, int]]:
        """
        Call the LLM and attempt to parse the response as JSON.

        On a parse failure the call is repeated with *retry_prompt*.  Usage
        from every attempt is summed.

        Returns ``(success, parsed_value, usage)``.
        """
        prompts = [user_prompt] + [retry_prompt or user_prompt] * (self.MAX_JSON_RETRIES - 1)
        usage_total = {"prompt_tokens": 0, "completion_tokens": 0}

        for attempt, current_prompt in enumerate(prompts, start=1):
            response_text, usage = await self._call_llm(system_prompt, current_prompt)
            usage_total["prompt_tokens"] += int(usage.get("prompt_tokens", 0) or 0)
            usage_total["completion_tokens"] += int(usage.get("completion_tokens", 0) or 0)

            if not response_text:
                # Empty response is a timeout or API error; no retry
                logger.warning(
                    "_call_llm_json: empty LLM response (attempt %d) — skipping retries",
                    attempt,
                )
                return False, [], usage_total

            success, parsed = self._parse_json_robust(response_text)
            if success:
                if attempt > 1:
                    logger.info("_call_llm_json: JSON parsed on attempt %d", attempt)
                return True, parsed, usage_total

            if attempt < self.MAX_JSON_RETRIES:
                logger.warning(
                    "_call_llm_json: JSON parse failed on attempt %d/%d, retrying",
                    attempt,
                    self.MAX_JSON_RETRIES,
                )

        logger.error("_call_llm_json: all %d JSON parse attempts failed", self.MAX_JSON_RETRIES)
        return False, [], usage_total

    # ------------------------------------------------------------------
    # Robust JSON parsing
    # ------------------------------------------------------------------

    def _parse_json_robust(self, response: str) -> Tuple[bool, Any]:
        """
        Try multiple strategies to parse JSON from potentially messy LLM output.

        Handles markdown code fences, trailing commas, Python-style literals,
        surrounding prose, and a missing closing bracket.
        """
        if not response:
            return False, []

        text = response.strip()

        ok, val = self._try_json(text)
        if ok:
            return True, val

        stripped = self._strip_code_fences(text)
        if stripped != text:
            ok, val = self._try_json(stripped)
            if ok:
                return True, val
            text = stripped

        fixed = self._fix_json_issues(text)
        ok, val = self._try_json(fixed)
        if ok:
            return True, val

        for bracket_pair in (("{", "}"), ("[", "]")):
            fragment = self._extract_json_structure(text, *bracket_pair)
            if fragment:
                ok, val = self._try_json(fragment)
                if ok:
                    return True, val
                ok, val = self._try_json(self._fix_json_issues(fragment))
                if ok:
                    return True, val

        # Truncated output: close the open structure
        for suffix in ("]", "}", "]}", "}]}"):
            ok, val = self._try_json(fixed + suffix)
            if ok:
                logger.debug("_parse_json_robust: recovered with suffix %r", suffix)
                return True, val

        logger.warning("_parse_json_robust: all strategies failed. Preview: %s", response[:400])
        return False, []

    @staticmethod
    def _try_json(text: str) -> Tuple[bool, Any]:
        try:
            return True, json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return False, None

    @staticmethod
    def _strip_code_fences(text: str) -> str:
        """Remove ```json / ``` delimiters that LLMs often wrap output in."""
        text = re.sub(r"^```(?:json|javascript|text)?\s*\n?", "", text, flags=re.IGNORECASE)
        text = re.sub(r"\n?```\s*$", "", text)
        return text.strip()

    @staticmethod
    def _fix_json_issues(text: str) -> str:
        """Repair the most common JSON mangling patterns from LLMs."""
        text = re.sub(r",(\s*[}\]])", r"\1", text)
        text = re.sub(r"\bTrue\b", "true", text)
        text = re.sub(r"\bFalse\b", "false", text)
        text = re.sub(r"\bNone\b", "null", text)
        text = re.sub(r"(?<!:)//[^\n]*", "", text)
        return text.strip()

    @staticmethod
    def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
        """
        Find the first complete balanced open_b … close_b structure in *text*.
        Returns the matched fragment, or empty string if not found.
        """
        start = text.find(open_b)
        if start == -1:
            return ""

        depth = 0
        in_string = False
        escape_next = False

        for i, ch in enumerate(text[start:], start=start):
            if escape_next:
                escape_next = False
                continue
            if ch == "\\" and in_string:
                escape_next = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch == open_b:
                depth += 1
            elif ch == close_b:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        return ""

    @staticmethod
    def _clamp(value: Any, lo: float = 0.0, hi: float = 1.0) -> float:
        """Parse *value* as float, clamped to [lo, hi]; returns midpoint on error."""
        try:
            return max(lo, min(hi, float(value)))
        except (TypeError, ValueError):
            return (lo + hi) / 2.0


def _parse_iso_date(value: Any) -> Optional[str]:
    """Keep only well-formed ``YYYY-MM-DD`` dates."""
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10]).isoformat()
    except ValueError:
        return None
