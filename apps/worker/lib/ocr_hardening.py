"""
Second-chance cleanup of a stored OCR lexical map when the analysis looks starved of text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from packages.shared.models import ExtractionMode, Flag, LexicalLine

OCR_SCORE_TRIGGER = 0.55
UNDATED_EVENTS_TRIGGER = 3

_ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D]")
_HYPHEN_BREAK_RE = re.compile(r"-\s*\n\s*")
_MULTI_SPACE_RE = re.compile(r"\s{2,}")
_TAB_CR_RE = re.compile(r"[\t\r]+")
_WS_RE = re.compile(r"\s+")


@dataclass
class HardeningResult:
    improved_map: list[LexicalLine]
    chosen_pass: ExtractionMode
    passes: list[tuple[ExtractionMode, int]]

    @property
    def text(self) -> str:
        return " ".join(line.text for line in self.improved_map)


def should_trigger_ocr_hardening(ocr_score: Optional[float], flags: Iterable[Flag]) -> bool:
    codes = [f.code for f in flags]
    undated = codes.count("EVENT_WITHOUT_DATE")
    generic = codes.count("TIMELINE_TOO_GENERIC")
    if ocr_score is not None and ocr_score < OCR_SCORE_TRIGGER:
        return True
    if undated >= UNDATED_EVENTS_TRIGGER:
        return True
    return generic >= 1 and undated >= 1


def sanitize_line(text: str) -> str:
    text = _ZERO_WIDTH_RE.sub("", text)
    text = _HYPHEN_BREAK_RE.sub("", text)
    text = _MULTI_SPACE_RE.sub(" ", text)
    text = _TAB_CR_RE.sub(" ", text)
    return text.strip()


def apply_ocr_hardening(lexical_map: list[LexicalLine] | None) -> HardeningResult:
    """Keep the sanitized map unless sanitizing lost non-whitespace content."""
    base_map = list(lexical_map or [])
    enhanced_map = [line.model_copy(update={"text": sanitize_line(line.text)}) for line in base_map]

    base_text = "\n".join(line.text for line in base_map)
    enhanced_text = "\n".join(line.text for line in enhanced_map)
    enhanced_wins = len(_WS_RE.sub("", enhanced_text)) >= len(_WS_RE.sub("", base_text))

    return HardeningResult(
        improved_map=enhanced_map if enhanced_wins else base_map,
        chosen_pass=ExtractionMode.ENHANCED if enhanced_wins else ExtractionMode.BASE,
        passes=[(ExtractionMode.BASE, len(base_text)), (ExtractionMode.ENHANCED, len(enhanced_text))],
    )
