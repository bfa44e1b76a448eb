"""
Common utility functions and helpers.
"""
from datetime import date, datetime, timezone
from typing import Optional, Union
import calendar
import hashlib
import re
import uuid


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns, so comparisons against ``utcnow()`` need this.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_hash(content: Union[bytes, str]) -> str:
    """
    Generate SHA256 hex digest of bytes or UTF-8 text.

    Args:
        content: Raw bytes or text to hash

    Returns:
        Hex digest of hash
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def jaccard_similarity(a: str, b: str) -> float:
    """
    Word-set Jaccard similarity of two strings (case-insensitive).

    Returns 0.0 when either side has no words.
    """
    words_a = set(re.findall(r"\w+", (a or "").lower()))
    words_b = set(re.findall(r"\w+", (b or "").lower()))
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def strip_extension(filename: str) -> str:
    """``"Permit EPR-123.pdf"`` → ``"Permit EPR-123"``."""
    if "." not in filename:
        return filename
    return filename.rsplit(".", 1)[0]


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compliance_period_for(day: date) -> str:
    """Quarter label used for evidence, e.g. ``"Q2-2025"``."""
    quarter = (day.month - 1) // 3 + 1
    return f"Q{quarter}-{day.year}"


def is_valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except (TypeError, ValueError):
        return False
