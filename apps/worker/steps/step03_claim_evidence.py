"""
Step 3 — Claim evidence evaluation.
Rates every claim high/medium/low from four independent signals (verified date,
traceable source, OCR confidence, claim specificity) and annotates it with an
assertion type, basis, missing-evidence hints and a reliability note.
"""
from __future__ import annotations

import logging
from typing import Optional

from packages.shared.models import (
    LEGAL_DISCLAIMER,
    QUALITY_ORDER,
    AnalysisConfig,
    AssertionType,
    Claim,
    ClaimSource,
    EvidenceQuality,
    Flag,
    Reliability,
    Severity,
)
from packages.shared.utils.claim_utils import has_traceability, is_valid_date

logger = logging.getLogger(__name__)

NOTES_SEPARATOR = " · "
SNIPPET_MAX_LENGTH = 240
BACKFILL_PROBE_LENGTH = 20
BACKFILL_WINDOW = 160
TRACE_MIN_SNIPPET = 8
DEFAULT_CONFIDENCE = 0.75
MIN_CONFIDENCE = 0.2

CONFIDENCE_PENALTY = {
    EvidenceQuality.HIGH: 0.0,
    EvidenceQuality.MEDIUM: 0.2,
    EvidenceQuality.LOW: 0.4,
}

REASON_NO_DATE = "no verified date"
REASON_PARTIAL_SOURCE = "partial source reference"
REASON_LOW_OCR = "low-confidence OCR"
REASON_TOO_SHORT = "claim is too brief"
REASON_RETAINED = "earlier evaluation rated this claim lower"
RATIONALE_SUFFICIENT = "sufficient documentation found in the file"

MISSING_DATE = "exact date for each finding"
MISSING_SOURCE = "page and line reference in the source document"
MISSING_OCR = "improved scan or manual review"
MISSING_DETAIL = "more detailed description of the finding"


def downgrade(quality: EvidenceQuality, steps: int = 1) -> EvidenceQuality:
    index = QUALITY_ORDER.index(quality)
    return QUALITY_ORDER[min(len(QUALITY_ORDER) - 1, index + steps)]


def lower_of(a: EvidenceQuality, b: EvidenceQuality) -> EvidenceQuality:
    return a if QUALITY_ORDER.index(a) >= QUALITY_ORDER.index(b) else b


def trim_snippet(snippet: Optional[str]) -> Optional[str]:
    if not snippet:
        return snippet
    if len(snippet) > SNIPPET_MAX_LENGTH:
        return f"{snippet[:SNIPPET_MAX_LENGTH - 3]}..."
    return snippet


def build_basis(source: Optional[ClaimSource]) -> list[str]:
    if source is None:
        return ["source location not marked for this item"]
    basis: list[str] = []
    if source.page is not None:
        basis.append(f"source document, page {source.page}")
    else:
        basis.append("source document, page not specified")
    if source.line_range and len(source.line_range) == 2:
        basis.append(f"lines {source.line_range[0]}-{source.line_range[1]}")
    if source.snippet:
        basis.append(f"quote: {source.snippet[:80]}")
    return basis


def determine_assertion_type(quality: EvidenceQuality, traceable: bool) -> AssertionType:
    if quality == EvidenceQuality.HIGH and traceable:
        return AssertionType.FACT
    if quality == EvidenceQuality.MEDIUM:
        return AssertionType.INTERPRETATION
    return AssertionType.POSSIBILITY


def _backfill_snippet(claim: Claim, lexical_text: Optional[str]) -> Optional[ClaimSource]:
    source = claim.source
    if (source and source.snippet) or not lexical_text or not claim.value:
        return source
    idx = lexical_text.find(claim.value[:BACKFILL_PROBE_LENGTH])
    if idx < 0:
        return source
    snippet = lexical_text[idx:idx + BACKFILL_WINDOW]
    base = source or ClaimSource()
    return base.model_copy(update={"snippet": snippet})


def _evaluate_one(
    claim: Claim,
    ocr_score: float,
    lexical_text: Optional[str],
    cfg: AnalysisConfig,
) -> Claim:
    quality = EvidenceQuality.HIGH
    reasons: list[str] = []
    missing: list[str] = []

    if not is_valid_date(claim.date):
        quality = downgrade(quality)
        reasons.append(REASON_NO_DATE)
        missing.append(MISSING_DATE)

    if not has_traceability(claim.source, TRACE_MIN_SNIPPET):
        quality = downgrade(quality)
        reasons.append(REASON_PARTIAL_SOURCE)
        missing.append(MISSING_SOURCE)

    if ocr_score < cfg.evidence_ocr_threshold:
        quality = downgrade(quality)
        reasons.append(REASON_LOW_OCR)
        missing.append(MISSING_OCR)

    if claim.value and len(claim.value.split()) < cfg.min_claim_words:
        quality = downgrade(quality)
        reasons.append(REASON_TOO_SHORT)
        missing.append(MISSING_DETAIL)

    # A claim never climbs above the rating it already carries, and an earlier
    # evaluation at least as strict as this one keeps its notes.
    prior = claim.evidence_quality
    penalty = CONFIDENCE_PENALTY[quality]
    if prior is not None:
        final = lower_of(quality, prior)
        penalty = max(0.0, CONFIDENCE_PENALTY[final] - CONFIDENCE_PENALTY[prior])
        if final == prior and claim.evidence_notes is not None:
            reasons = claim.evidence_notes.split(NOTES_SEPARATOR) if claim.evidence_notes else []
            missing = list(claim.missing_evidence or [])
        elif final != quality:
            reasons = reasons + [REASON_RETAINED]
        quality = final

    base_confidence = claim.confidence if claim.confidence is not None else DEFAULT_CONFIDENCE
    confidence = round(max(MIN_CONFIDENCE, base_confidence - penalty), 6)

    source = _backfill_snippet(claim, lexical_text)
    if source is not None:
        source = source.model_copy(update={"snippet": trim_snippet(source.snippet)})

    notes = NOTES_SEPARATOR.join(reasons)
    return claim.model_copy(update={
        "confidence": confidence,
        "source": source,
        "evidence_quality": quality,
        "evidence_notes": notes,
        "assertion_type": determine_assertion_type(quality, has_traceability(source, TRACE_MIN_SNIPPET)),
        "basis": build_basis(source),
        "missing_evidence": missing,
        "reliability": Reliability(level=quality, rationale=notes or RATIONALE_SUFFICIENT),
        "caution": LEGAL_DISCLAIMER,
    })


def evaluate_claim_evidence(
    claims: list[Claim],
    ocr_score: float | None = None,
    lexical_text: str | None = None,
    config: AnalysisConfig | None = None,
) -> tuple[list[Claim], list[Flag]]:
    """
    Annotate claims in their original order.
    Returns (evaluated_claims, flags). An absent OCR score counts as fully confident.
    """
    cfg = config or AnalysisConfig()
    effective_ocr = 1.0 if ocr_score is None else ocr_score
    evaluated = [_evaluate_one(c, effective_ocr, lexical_text, cfg) for c in claims]

    flags: list[Flag] = []
    low_count = sum(1 for c in evaluated if c.evidence_quality == EvidenceQuality.LOW)
    if low_count:
        ratio = low_count / max(len(evaluated), 1)
        flags.append(Flag(
            code="CLAIM_WEAK_EVIDENCE",
            message="Some claims rely on a weak source or unstable OCR.",
            severity=Severity.WARNING if ratio > cfg.weak_evidence_warning_ratio else Severity.INFO,
        ))

    if effective_ocr < cfg.ocr_low_confidence_threshold:
        flags.append(Flag(
            code="OCR_LOW_CONFIDENCE_SECTION",
            message="The OCR service reported low confidence for this file.",
            severity=Severity.WARNING,
        ))

    logger.info(f"Evidence evaluation: {len(evaluated)} claims, {low_count} low quality")
    return evaluated, flags
