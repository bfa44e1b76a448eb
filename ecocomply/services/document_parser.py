"""
Permit and consent text extraction for PDF and Word files.

PDFs are read page by page with PyMuPDF.  Scanned permits usually have no
text layer, so when the whole document yields fewer than
``OCR_FALLBACK_MIN_CHARS`` characters every page is rendered and passed
through Tesseract instead.  DOCX files are read with python-docx, tables
included, since permit conditions are often laid out in tables.
"""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
import pytesseract
from docx import Document as DocxDocument
from PIL import Image

from ecocomply.config import settings

logger = logging.getLogger(__name__)

OCR_FALLBACK_MIN_CHARS = 100


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ParsedPage:
    number: int     # 1-based
    text: str


@dataclass
class ParsedDocument:
    """
    Output of the DocumentParser.

    Attributes:
        full_text:  Text of all pages joined with ``[Page N]`` markers so the
                    extraction prompt can report page numbers.
        pages:      Per-page text (a single page for DOCX).
        metadata:   page_count, word_count, title, author, subject, used_ocr,
                    file_type.
    """

    full_text: str
    pages: List[ParsedPage] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class DocumentParser:
    """Parses PDF and Word documents into ParsedDocument objects."""

    def __init__(self) -> None:
        if settings.TESSERACT_CMD:
            pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    async def parse_document(self, file_path: str, file_type: str) -> ParsedDocument:
        """
        Parse a document file.

        Args:
            file_path: Absolute path to the file on disk.
            file_type: Extension with or without dot, e.g. ".pdf" or "docx".

        Raises:
            ValueError:   Unsupported file type.
            RuntimeError: Password-protected or unreadable file.
        """
        ft = file_type.lower().lstrip(".")
        if ft == "pdf":
            return await self._parse_pdf(file_path)
        elif ft in ("docx", "doc"):
            return await self._parse_docx(file_path)
        else:
            raise ValueError(f"Unsupported file type: {file_type!r}")

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    async def _parse_pdf(self, file_path: str) -> ParsedDocument:
        try:
            doc = fitz.open(file_path)
        except Exception as exc:
            raise RuntimeError(f"Cannot open PDF file: {exc}") from exc

        if doc.needs_pass:
            doc.close()
            raise RuntimeError(
                "PDF is password-protected. Please provide an unlocked copy."
            )

        try:
            raw_meta = doc.metadata or {}
            pages = [
                ParsedPage(number=i, text=_clean_page_text(page.get_text("text")))
                for i, page in enumerate(doc, start=1)
            ]

            used_ocr = False
            if sum(len(p.text) for p in pages) < OCR_FALLBACK_MIN_CHARS:
                logger.info(
                    "PDF text layer too thin (%d chars) — running OCR on %d page(s)",
                    sum(len(p.text) for p in pages),
                    doc.page_count,
                )
                ocr_pages = [
                    ParsedPage(number=i, text=_clean_page_text(await self._ocr_page(page)))
                    for i, page in enumerate(doc, start=1)
                ]
                if sum(len(p.text) for p in ocr_pages) > sum(len(p.text) for p in pages):
                    pages = ocr_pages
                    used_ocr = True

            page_count = doc.page_count
        finally:
            doc.close()

        full_text = _join_pages(pages)
        metadata: Dict[str, Any] = {
            "page_count": page_count,
            "word_count": len(full_text.split()),
            "title": raw_meta.get("title", ""),
            "author": raw_meta.get("author", ""),
            "subject": raw_meta.get("subject", ""),
            "used_ocr": used_ocr,
            "file_type": "pdf",
        }
        return ParsedDocument(full_text=full_text, pages=pages, metadata=metadata)

    async def _ocr_page(self, page: fitz.Page) -> str:
        """Render an entire page at 2× scale and run Tesseract OCR."""
        try:
            pix = page.get_pixmap(matrix=fitz.Matrix(2, 2))
            img = Image.open(io.BytesIO(pix.tobytes("png")))
            return pytesseract.image_to_string(img)
        except Exception as exc:
            logger.warning(f"Full-page OCR failed on page {page.number + 1}: {exc}")
            return ""

    # ------------------------------------------------------------------
    # DOCX
    # ------------------------------------------------------------------

    async def _parse_docx(self, file_path: str) -> ParsedDocument:
        """Parse a Word file: paragraphs in order, then tables as pipe-delimited rows."""
        try:
            doc = DocxDocument(file_path)
        except Exception as exc:
            raise RuntimeError(f"Cannot open Word file: {exc}") from exc

        parts: List[str] = [p.text.strip() for p in doc.paragraphs if p.text.strip()]

        for table in doc.tables:
            rows = _format_table_rows(
                [[cell.text for cell in row.cells] for row in table.rows]
            )
            if rows:
                parts.append(rows)

        text = "\n".join(parts)
        core = doc.core_properties
        metadata: Dict[str, Any] = {
            "page_count": None,   # python-docx cannot report rendered page count
            "word_count": len(text.split()),
            "title": core.title or "",
            "author": core.author or "",
            "subject": core.subject or "",
            "used_ocr": False,
            "file_type": "docx",
        }
        return ParsedDocument(
            full_text=text,
            pages=[ParsedPage(number=1, text=text)] if text else [],
            metadata=metadata,
        )


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

def _clean_page_text(text: str) -> str:
    """Collapse runs of blank lines and strip isolated page numbers."""
    lines = [ln.rstrip() for ln in (text or "").splitlines()]
    lines = [ln for ln in lines if not re.match(r"^\s*\d{1,4}\s*$", ln)]
    cleaned = "\n".join(lines)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _join_pages(pages: List[ParsedPage]) -> str:
    return "\n\n".join(f"[Page {p.number}]\n{p.text}" for p in pages if p.text)


def _format_table_rows(rows: List[List[Optional[str]]]) -> str:
    """Format a list-of-lists table as pipe-delimited text."""
    lines: List[str] = []
    for row in rows:
        cells = [str(cell).strip() if cell is not None else "" for cell in row]
        if any(cells):
            lines.append(" | ".join(cells))
    return "\n".join(lines)
