"""
Step 1 — Local text extraction (no network).
Reads the embedded text layer of a PDF with PyMuPDF, or the paragraphs of a DOCX
with python-docx. Unreadable input degrades to empty text with a warning.
"""
from __future__ import annotations

import io
import logging
import os
import re

import docx
import fitz  # PyMuPDF

from packages.shared.models import LocalParse

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_WS_RE = re.compile(r"\s+")


def parse_pdf_locally(data: bytes) -> LocalParse:
    """Embedded text of every page, trimmed, plus the page count."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        logger.warning(f"Failed to parse PDF locally: {exc}")
        return LocalParse()
    try:
        texts = [page.get_text("text") or "" for page in doc]
        return LocalParse(text="\n".join(texts).strip(), page_count=max(1, doc.page_count))
    finally:
        doc.close()


def _is_pdf(filename: str, mime_type: str | None) -> bool:
    return mime_type == PDF_MIME or os.path.splitext(filename)[1].lower() == ".pdf"


def _is_docx(filename: str, mime_type: str | None) -> bool:
    return mime_type == DOCX_MIME or os.path.splitext(filename)[1].lower() == ".docx"


def extract_text_from_attachment(data: bytes, filename: str, mime_type: str | None = None) -> str:
    """
    Whitespace-collapsed plain text of a PDF or DOCX attachment.
    Other formats (including legacy .doc) return an empty string.
    """
    if _is_pdf(filename, mime_type):
        return _WS_RE.sub(" ", parse_pdf_locally(data).text).strip()

    if _is_docx(filename, mime_type):
        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as exc:
            logger.warning(f"Failed to parse DOCX '{filename}': {exc}")
            return ""
        parts = [p.text for p in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                parts.extend(cell.text for cell in row.cells)
        return _WS_RE.sub(" ", " ".join(parts)).strip()

    return ""
