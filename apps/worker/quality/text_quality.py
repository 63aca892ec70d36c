"""
Deterministic plausibility scoring for extracted text.
Used to compare extraction passes and as an evidence signal downstream.
"""
from __future__ import annotations

import re

from packages.shared.models import OcrMetrics

_NON_PRINTABLE_RE = re.compile(r"[^\x20-\x7E]")
_NON_DIGIT_RE = re.compile(r"[^0-9]")

WEIRD_RATIO_LIMIT = 0.2
SHORT_LINE_RATIO_LIMIT = 0.4
SHORT_LINE_MAX_LENGTH = 9
DIGIT_RATIO_LIMIT = 0.4
MIN_TEXT_LENGTH = 200

REASON_WEIRD_CHARS = "high proportion of non-printable characters"
REASON_SHORT_LINES = "many short, unreadable lines"
REASON_DIGITS = "high digit-to-letter ratio"
REASON_TOO_SHORT = "text is unusually short"


def weird_ratio(text: str) -> float:
    """Fraction of characters outside printable ASCII (newlines included). Empty text is 1.0."""
    if not text:
        return 1.0
    return len(_NON_PRINTABLE_RE.findall(text)) / len(text)


def compute_ocr_metrics(text: str | None) -> OcrMetrics:
    clean = (text or "").replace("\r", "")
    char_count = len(clean) or 1
    lines = [line.strip() for line in clean.split("\n")]

    weird = 1.0 if not clean else weird_ratio(clean)
    short_lines = sum(1 for line in lines if 0 < len(line) <= SHORT_LINE_MAX_LENGTH)
    short_line_ratio = short_lines / len(lines) if lines else 0.0
    digit_ratio = len(_NON_DIGIT_RE.sub("", clean)) / char_count

    score = 1.0
    reasons: list[str] = []
    if weird > WEIRD_RATIO_LIMIT:
        score -= 0.3
        reasons.append(REASON_WEIRD_CHARS)
    if short_line_ratio > SHORT_LINE_RATIO_LIMIT:
        score -= 0.2
        reasons.append(REASON_SHORT_LINES)
    if digit_ratio > DIGIT_RATIO_LIMIT:
        score -= 0.1
        reasons.append(REASON_DIGITS)
    if len(clean) < MIN_TEXT_LENGTH:
        score -= 0.2
        reasons.append(REASON_TOO_SHORT)

    # Float subtraction drift (1 - 0.3 - 0.2 ...) is rounded away so equal inputs compare equal.
    score = round(max(0.0, min(1.0, score)), 6)
    return OcrMetrics(score=score, reasons=reasons)
