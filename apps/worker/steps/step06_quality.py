"""
Step 6 — Document quality scoring.
Aggregates claim, timeline, flag and reasoning signals into threshold findings
and a single 0-100 score, escalating to a human expert on critical signals.
"""
from __future__ import annotations

import logging
import math
import re
from typing import Optional

from packages.shared.models import (
    LEGAL_DISCLAIMER,
    AnalysisConfig,
    AssertionType,
    Claim,
    EvidenceQuality,
    Flag,
    Reliability,
    Severity,
    TimelineEvent,
)
from packages.shared.utils.claim_utils import extract_numeric_value, has_traceability, is_valid_date, parse_date_value

logger = logging.getLogger(__name__)

NO_CLAIMS_SCORE = 40
TRACE_MIN_SNIPPET = 10
GENERIC_MIN_LENGTH = 5
GENERIC_PREFIXES = ("note", "event")
GENERIC_MARKERS = ("general", "unspecified")
_DISABILITY_RE = re.compile(r"(disability|%)", re.IGNORECASE)

BASIS_DEFAULT = "deterministic document quality metrics"
MISSING_DEFAULT = "additional documentation or a human expert opinion is required"
RATIONALE_QUALITY = "computed from the document's traceability and reliability metrics"


def _finding(
    code: str,
    message: str,
    severity: Severity,
    *,
    related_claim_ids: Optional[list[str]] = None,
    basis_hint: Optional[str] = None,
    missing_hint: Optional[str] = None,
    assertion_type: Optional[AssertionType] = None,
    reliability_level: Optional[EvidenceQuality] = None,
) -> Flag:
    ids = [i for i in (related_claim_ids or []) if i]
    basis = [basis_hint or BASIS_DEFAULT]
    if ids:
        basis.append(f"affected claims: {', '.join(ids)}")
    critical = severity == Severity.CRITICAL
    return Flag(
        code=code,
        message=message,
        severity=severity,
        related_claim_ids=ids or None,
        assertion_type=assertion_type or (AssertionType.INTERPRETATION if critical else AssertionType.POSSIBILITY),
        basis=basis,
        missing_evidence=[missing_hint or MISSING_DEFAULT],
        reliability=Reliability(
            level=reliability_level or (EvidenceQuality.MEDIUM if critical else EvidenceQuality.LOW),
            rationale=RATIONALE_QUALITY,
        ),
        caution=LEGAL_DISCLAIMER,
    )


def is_generic_claim(claim: Claim) -> bool:
    text = f"{claim.type or ''} {claim.value or ''}".strip().lower()
    if len(text) < GENERIC_MIN_LENGTH:
        return True
    return text.startswith(GENERIC_PREFIXES) or any(m in text for m in GENERIC_MARKERS)


def count_timeline_gaps(events: list[TimelineEvent], gap_days: int) -> int:
    anchors = sorted(parsed[0] for e in events if (parsed := parse_date_value(e.date)))
    return sum(1 for prev, cur in zip(anchors, anchors[1:]) if (cur - prev).days > gap_days)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_document_quality(
    claims: list[Claim],
    timeline: list[TimelineEvent],
    flags: list[Flag],
    reasoning_findings: list[Flag] | None = None,
    config: AnalysisConfig | None = None,
) -> tuple[list[Flag], int]:
    """Returns (quality_findings, score)."""
    cfg = config or AnalysisConfig()
    reasoning = reasoning_findings or []
    findings: list[Flag] = []

    if not claims:
        findings.append(_finding(
            "OPINION_NO_CLAIMS",
            "No medical claims were found in this document.",
            Severity.WARNING,
            basis_hint="metric: zero claims",
            missing_hint="provide source-backed medical claims",
        ))
        return findings, NO_CLAIMS_SCORE

    total = len(claims)
    undated = [c for c in claims if not is_valid_date(c.date)]
    untraceable = [c for c in claims if not has_traceability(c.source, TRACE_MIN_SNIPPET)]
    generic = [c for c in claims if is_generic_claim(c)]
    low_evidence = [c for c in claims if c.evidence_quality == EvidenceQuality.LOW]
    high_evidence = [c for c in claims if c.evidence_quality == EvidenceQuality.HIGH]

    pct_dated = (total - len(undated)) / total
    pct_traceable = (total - len(untraceable)) / total
    pct_generic = len(generic) / total
    pct_low = len(low_evidence) / total

    if pct_dated < 0.6:
        findings.append(_finding(
            "OPINION_LACKS_DATES",
            "A large share of the claims are not tied to a verified date.",
            Severity.CRITICAL if pct_dated < 0.4 else Severity.WARNING,
            related_claim_ids=[c.id for c in undated],
            basis_hint="metric: share of claims with a date",
            missing_hint="state an exact date for every medical claim",
        ))

    if pct_traceable < 0.6:
        findings.append(_finding(
            "OPINION_WEAK_TRACEABILITY",
            "Some claims lack a page reference or a detailed quote from the document.",
            Severity.CRITICAL if pct_traceable < 0.4 else Severity.WARNING,
            related_claim_ids=[c.id for c in untraceable],
            basis_hint="metric: share of claims with an attached source",
            missing_hint="add page and line references to every claim",
        ))

    if pct_generic > 0.4:
        findings.append(_finding(
            "OPINION_TOO_GENERAL",
            "Many general, non-measurable claims make legal use difficult.",
            Severity.WARNING if pct_generic > 0.6 else Severity.INFO,
            basis_hint="metric: share of general, non-measurable claims",
            missing_hint="measurable wording linked to a page or test is required",
        ))

    if pct_low > 0.3:
        findings.append(_finding(
            "OPINION_WEAK_EVIDENCE",
            "A significant share of the claims rely on a weak source or problematic OCR.",
            Severity.WARNING if pct_low > 0.5 else Severity.INFO,
            related_claim_ids=[c.id for c in low_evidence],
            basis_hint="metric: share of claims with low evidence quality",
            missing_hint="attach good-quality scanned sources or manual confirmation",
        ))

    disability_values: list[tuple[Optional[str], float]] = []
    for c in claims:
        if not _DISABILITY_RE.search(f"{c.type or ''} {c.value or ''}"):
            continue
        number = extract_numeric_value(c.value if c.value is not None else c.type)
        if number is not None:
            disability_values.append((c.id, number))
    distinct_values = {v for _, v in disability_values}
    if len(distinct_values) > 1:
        findings.append(_finding(
            "OPINION_INTERNAL_CONTRADICTIONS",
            "Different disability levels appear in the document without explanation.",
            Severity.WARNING,
            related_claim_ids=[cid for cid, _ in disability_values],
            basis_hint="comparison of disability claims with different numeric values",
            missing_hint="a medical explanation reconciling the percentages is required",
        ))

    gaps = count_timeline_gaps(timeline, cfg.gap_threshold_days)
    if gaps > 0:
        findings.append(_finding(
            "OPINION_FRAGMENTED_TIMELINE",
            "There are significant gaps in the treatment timeline.",
            Severity.WARNING if gaps > 1 else Severity.INFO,
            basis_hint=f"metric: intervals of more than {cfg.gap_threshold_days} days between documented events",
            missing_hint="complete the periodic documentation or interim reviews",
        ))

    critical_flags = sum(1 for f in flags if f.severity == Severity.CRITICAL)
    flag_overload = critical_flags / len(flags) if flags else 0.0
    if flag_overload > 0.25 or critical_flags >= 3:
        findings.append(_finding(
            "OPINION_FLAG_OVERLOAD",
            "The document carries an unusual load of critical flags.",
            Severity.WARNING,
            basis_hint="ratio of critical flags to all flags",
            missing_hint="provide clarification or a human opinion on the critical flags",
        ))

    generic_penalty = min(0.6, pct_generic)
    contradiction_penalty = min(1.0, (len(distinct_values) - 1) * 0.3) if len(distinct_values) > 1 else 0.0
    flag_penalty = min(1.0, critical_flags * 0.2)
    if timeline:
        coverage = sum(1 for e in timeline if is_valid_date(e.date)) / len(timeline)
    else:
        coverage = 0.5
    timeline_health = max(0.0, min(1.0, coverage - min(1.0, gaps * 0.2)))
    critical_reasoning = sum(1 for f in reasoning if f.severity == Severity.CRITICAL)
    reasoning_penalty = min(0.25, critical_reasoning * 0.1 + len(reasoning) * 0.05)
    evidence_factor = 1 - pct_low + (len(high_evidence) / total) * 0.2

    raw = (
        pct_dated * 20
        + pct_traceable * 20
        + (1 - generic_penalty) * 15
        + (1 - contradiction_penalty) * 15
        + (1 - flag_penalty) * 15
        + timeline_health * 10
        + evidence_factor * 5
        - reasoning_penalty * 10
    )
    score = max(0, min(100, _round_half_up(raw)))

    escalate = (
        critical_reasoning > 0
        or any(f.severity == Severity.CRITICAL or f.code == "OCR_LOW_CONFIDENCE_SECTION" for f in flags)
        or any(f.severity == Severity.CRITICAL for f in findings)
    )
    if escalate:
        findings.append(_finding(
            "HUMAN_EXPERT_REQUIRED",
            "Based on the available material, an independent medical expert should be involved.",
            Severity.CRITICAL,
            basis_hint="critical findings or low OCR reliability were recorded",
            missing_hint="a human expert opinion or supplementary tests are required",
            assertion_type=AssertionType.POSSIBILITY,
            reliability_level=EvidenceQuality.MEDIUM,
        ))

    logger.info(f"Quality score: {score} ({len(findings)} findings)")
    return findings, score
