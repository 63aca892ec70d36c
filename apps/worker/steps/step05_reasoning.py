"""
Step 5 — Medical reasoning analysis.
Cross-claim contradictions and treatment gaps, followed by the specialty rule sets.
"""
from __future__ import annotations

import logging
from itertools import combinations
from typing import Optional, Sequence

from apps.worker.lib.finding_utils import build_finding, has_keyword
from apps.worker.lib.specialty_rules import SPECIALTY_RULES, Rule, run_specialty_rules
from packages.shared.models import AssertionType, Claim, EvidenceQuality, Flag, Severity, TimelineEvent
from packages.shared.utils.claim_utils import month_key, parse_date_value

logger = logging.getLogger(__name__)

DIAGNOSIS_KEYWORDS = ("diagnos",)
WORK_KEYWORDS = ("work", "capacity")
DISABILITY_KEYWORDS = ("disability",)
TREATMENT_KEYWORDS = ("treatment", "therapy", "physio")
FOLLOW_UP_KEYWORDS = ("follow", "review")

RATIONALE_INFERENCE = "logical inference from existing claims and deterministic expert rules"


def same_month(date_a: Optional[str], date_b: Optional[str]) -> bool:
    key_a, key_b = month_key(date_a), month_key(date_b)
    return key_a is not None and key_a == key_b


def _diagnosis_contradictions(claims: list[Claim]) -> list[Flag]:
    findings: list[Flag] = []
    diagnoses = [c for c in claims if has_keyword(c.type, DIAGNOSIS_KEYWORDS)]
    for a, b in combinations(diagnoses, 2):
        if a.value and b.value and a.value != b.value and same_month(a.date, b.date):
            findings.append(build_finding(
                "CONTRADICTION_DIAGNOSIS",
                "Different diagnoses were recorded in the same period without explanation.",
                Severity.WARNING,
                domain="GENERAL",
                related_claim_ids=[a.id, b.id],
                basis_hint="two diagnoses recorded close together in time",
                missing_hint="provide detail or an expert opinion explaining the difference",
                rationale=RATIONALE_INFERENCE,
            ))
    return findings


def _work_capacity_contradictions(claims: list[Claim]) -> list[Flag]:
    findings: list[Flag] = []
    work = [c for c in claims if has_keyword(c.type, WORK_KEYWORDS)]
    disability = [c for c in claims if has_keyword(c.type, DISABILITY_KEYWORDS)]
    for w in work:
        for d in disability:
            if w is d:
                continue
            if same_month(w.date, d.date):
                findings.append(build_finding(
                    "CONTRADICTION_WORK_CAPACITY",
                    "Reported work capacity does not match the disability level recorded in the same period.",
                    Severity.WARNING,
                    domain="GENERAL",
                    related_claim_ids=[w.id, d.id],
                    basis_hint="work capacity claims compared against disability claims",
                    missing_hint="a clinical explanation reconciling the two assessments is required",
                    rationale=RATIONALE_INFERENCE,
                ))
    return findings


def _treatment_gaps(timeline: list[TimelineEvent]) -> list[Flag]:
    findings: list[Flag] = []
    follow_ups = [
        parsed[0]
        for e in timeline
        if has_keyword(e.type, FOLLOW_UP_KEYWORDS) and (parsed := parse_date_value(e.date))
    ]
    for event in timeline:
        if not has_keyword(event.type, TREATMENT_KEYWORDS):
            continue
        parsed = parse_date_value(event.date)
        if parsed and any(f > parsed[0] for f in follow_ups):
            continue
        findings.append(build_finding(
            "TREATMENT_GAP",
            f"Treatment ({event.description}) without documented follow-up.",
            Severity.INFO,
            domain="GENERAL",
            basis_hint="computed from timeline events",
            missing_hint="document a review visit or continuation plan",
            assertion_type=AssertionType.POSSIBILITY,
            reliability_level=EvidenceQuality.LOW,
            rationale=RATIONALE_INFERENCE,
        ))
    return findings


def analyze_reasoning(
    claims: list[Claim],
    timeline: list[TimelineEvent],
    rule_sets: Sequence[Sequence[Rule]] | None = None,
) -> list[Flag]:
    """
    Returns findings in a fixed order: diagnosis contradictions, work-capacity
    contradictions, treatment gaps, then each specialty rule set in turn.
    """
    findings: list[Flag] = []
    findings.extend(_diagnosis_contradictions(claims))
    findings.extend(_work_capacity_contradictions(claims))
    findings.extend(_treatment_gaps(timeline))
    for rules in (rule_sets if rule_sets is not None else (SPECIALTY_RULES,)):
        findings.extend(run_specialty_rules(claims, timeline, rules))
    logger.info(f"Reasoning analysis: {len(findings)} findings")
    return findings
