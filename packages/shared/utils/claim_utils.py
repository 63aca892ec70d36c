from __future__ import annotations

import hashlib
import re
from datetime import date
from typing import Iterable, Optional

from packages.shared.models import ClaimSource, DatePrecision

_FULL_MONTHS = (
    "january|february|march|april|may|june|july|august"
    "|september|october|november|december"
)
_ABBREV_MONTHS = "jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec"
_MONTH_MAP = {
    "january": 1, "february": 2, "march": 3, "april": 4,
    "may": 5, "june": 6, "july": 7, "august": 8,
    "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4,
    "jun": 6, "jul": 7, "aug": 8, "sep": 9, "sept": 9,
    "oct": 10, "nov": 11, "dec": 12,
}
_MONTH_NAME = rf"({_FULL_MONTHS}|{_ABBREV_MONTHS})\.?"

# Whole-value date formats accepted on the claim ``date`` field.
_ISO_DAY_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T\s].*)?$")
_US_DAY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_NAMED_DAY_RE = re.compile(rf"^{_MONTH_NAME}\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})$", re.IGNORECASE)
_DAY_NAMED_RE = re.compile(rf"^(\d{{1,2}})\s+{_MONTH_NAME},?\s+(\d{{4}})$", re.IGNORECASE)
_ISO_MONTH_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})$")
_NAMED_MONTH_RE = re.compile(rf"^{_MONTH_NAME}\s+(\d{{4}})$", re.IGNORECASE)
_YEAR_RE = re.compile(r"^(\d{4})$")

# Free-text search patterns, most precise first.
_TEXT_DAY_RE = re.compile(r"(20\d{2}|19\d{2})[-/.](\d{1,2})[-/.](\d{1,2})")
_TEXT_MONTH_RE = re.compile(r"(20\d{2}|19\d{2})[-/.](\d{1,2})")
_TEXT_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date_value(value: str | None) -> tuple[date, DatePrecision] | None:
    """
    Parse a whole date value (not a search inside free text).
    Partial dates resolve to the first day of their month/year.
    """
    if not value:
        return None
    text = str(value).strip()
    if not text:
        return None

    m = _ISO_DAY_RE.match(text)
    if m:
        d = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        return (d, DatePrecision.DAY) if d else None
    m = _US_DAY_RE.match(text)
    if m:
        d = _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        return (d, DatePrecision.DAY) if d else None
    m = _NAMED_DAY_RE.match(text)
    if m:
        d = _safe_date(int(m.group(3)), _MONTH_MAP[m.group(1).lower()], int(m.group(2)))
        return (d, DatePrecision.DAY) if d else None
    m = _DAY_NAMED_RE.match(text)
    if m:
        d = _safe_date(int(m.group(3)), _MONTH_MAP[m.group(2).lower()], int(m.group(1)))
        return (d, DatePrecision.DAY) if d else None
    m = _ISO_MONTH_RE.match(text)
    if m:
        d = _safe_date(int(m.group(1)), int(m.group(2)), 1)
        return (d, DatePrecision.MONTH) if d else None
    m = _NAMED_MONTH_RE.match(text)
    if m:
        d = _safe_date(int(m.group(2)), _MONTH_MAP[m.group(1).lower()], 1)
        return (d, DatePrecision.MONTH) if d else None
    m = _YEAR_RE.match(text)
    if m:
        d = _safe_date(int(m.group(1)), 1, 1)
        return (d, DatePrecision.YEAR) if d else None
    return None


def is_valid_date(value: str | None) -> bool:
    return parse_date_value(value) is not None


def month_key(value: str | None) -> str | None:
    """'YYYY-MM' for values precise to at least a month; year-only dates have no month."""
    parsed = parse_date_value(value)
    if not parsed or parsed[1] == DatePrecision.YEAR:
        return None
    return parsed[0].strftime("%Y-%m")


def find_date_in_text(text: str | None) -> tuple[str, DatePrecision, date] | None:
    """
    Search free text for a date: YYYY-MM-DD (day), then YYYY-MM (month), then a bare year.
    Returns (normalized value, precision, anchor date) for the first pattern that matches.
    """
    if not text:
        return None
    m = _TEXT_DAY_RE.search(text)
    if m:
        d = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if d:
            return d.isoformat(), DatePrecision.DAY, d
    m = _TEXT_MONTH_RE.search(text)
    if m:
        d = _safe_date(int(m.group(1)), int(m.group(2)), 1)
        if d:
            return d.strftime("%Y-%m"), DatePrecision.MONTH, d
    m = _TEXT_YEAR_RE.search(text)
    if m:
        d = date(int(m.group(0)), 1, 1)
        return m.group(0), DatePrecision.YEAR, d
    return None


def has_traceability(source: ClaimSource | None, min_snippet_length: int = 8) -> bool:
    """A claim is traceable when it names a page, a two-line range, or carries a usable quote."""
    if source is None:
        return False
    if source.page is not None:
        return True
    if source.line_range and len(source.line_range) == 2:
        return True
    if source.snippet and len(source.snippet.strip()) > min_snippet_length:
        return True
    return False


def extract_numeric_value(text: str | None) -> Optional[float]:
    if not text:
        return None
    m = _NUMBER_RE.search(text)
    return float(m.group(0)) if m else None


def stable_id(parts: Iterable[str]) -> str:
    raw = "|".join(parts)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]
