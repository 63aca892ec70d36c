from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Optional

from packages.shared.models import (
    LEGAL_DISCLAIMER,
    AssertionType,
    EvidenceQuality,
    Flag,
    Reliability,
    Severity,
)

NEEDS_EVIDENCE_RE = re.compile(r"(MISSING|NO_|WITHOUT|GAP)", re.IGNORECASE)
CONTRADICTION_RE = re.compile(r"(CONTRADICTION|INCONSISTENT)", re.IGNORECASE)

MISSING_ATTACH = "attach the missing test or documentation referenced by this finding"
MISSING_EXPLAIN = "a written clinical explanation or expert opinion is needed to resolve the contradiction"
MISSING_FURTHER = "support with further testing or a human expert opinion"

BASIS_INFERRED = "inferred from the timeline and deterministic expert rules"
RATIONALE_RULE = "deterministic expert rule applied to the analyzed documentation"


@lru_cache(maxsize=None)
def keyword_pattern(keyword: str) -> re.Pattern:
    """Short alphanumeric tokens (ct, us, lot) must stand alone; longer keywords match as substrings."""
    if len(keyword) <= 3 and keyword.isalnum():
        return re.compile(rf"\b{re.escape(keyword)}\b")
    return re.compile(re.escape(keyword))


def has_keyword(text: Optional[str], keywords: Iterable[str]) -> bool:
    low = (text or "").lower()
    return any(keyword_pattern(k).search(low) for k in keywords)


def default_missing_evidence(code: str) -> str:
    if NEEDS_EVIDENCE_RE.search(code):
        return MISSING_ATTACH
    if CONTRADICTION_RE.search(code):
        return MISSING_EXPLAIN
    return MISSING_FURTHER


def build_finding(
    code: str,
    message: str,
    severity: Severity,
    *,
    domain: Optional[str] = None,
    related_claim_ids: Optional[list[str]] = None,
    basis_hint: Optional[str] = None,
    missing_hint: Optional[str] = None,
    assertion_type: Optional[AssertionType] = None,
    reliability_level: Optional[EvidenceQuality] = None,
    rationale: str = RATIONALE_RULE,
) -> Flag:
    """
    Reasoning/specialty finding with its hedging fields filled in.
    Critical findings default to INTERPRETATION at medium reliability, the rest to POSSIBILITY at low.
    """
    ids = [i for i in (related_claim_ids or []) if i]
    basis = [f"related claims: {', '.join(ids)}"] if ids else [BASIS_INFERRED]
    if basis_hint:
        basis.append(basis_hint)
    critical = severity == Severity.CRITICAL
    return Flag(
        code=code,
        message=message,
        severity=severity,
        related_claim_ids=ids or None,
        domain=domain,
        assertion_type=assertion_type or (AssertionType.INTERPRETATION if critical else AssertionType.POSSIBILITY),
        basis=basis,
        missing_evidence=[missing_hint or default_missing_evidence(code)],
        reliability=Reliability(
            level=reliability_level or (EvidenceQuality.MEDIUM if critical else EvidenceQuality.LOW),
            rationale=rationale,
        ),
        caution=LEGAL_DISCLAIMER,
    )
