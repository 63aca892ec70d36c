"""
Unit tests for document quality scoring (Step 6).
"""
from __future__ import annotations

import itertools

from apps.worker.steps.step06_quality import count_timeline_gaps, is_generic_claim, score_document_quality
from packages.shared.models import (
    LEGAL_DISCLAIMER,
    AssertionType,
    Claim,
    EvidenceQuality,
    Flag,
    Severity,
    TimelineEvent,
)


def _claim(claim_id: str, value: str = "lumbar disc herniation confirmed on MRI", date: str | None = "2023-01-01", **kw) -> Claim:
    return Claim(id=claim_id, type=kw.pop("type", "Diagnosis"), value=value, date=date, source={"page": 1}, **kw)


def _event(event_id: str, date: str | None) -> TimelineEvent:
    return TimelineEvent(id=event_id, date=date, type="EXAMINATION", description="orthopedic review")


def _codes(findings):
    return [f.code for f in findings]


def test_no_claims():
    findings, score = score_document_quality([], [], [])
    assert score == 40
    assert _codes(findings) == ["OPINION_NO_CLAIMS"]
    assert findings[0].severity == Severity.WARNING


def test_well_documented_file_scores_full():
    findings, score = score_document_quality([_claim("c1")], [_event("e1", "2023-01-01")], [])
    assert findings == []
    assert score == 100


def test_undated_claims_are_critical_and_escalate():
    claims = [_claim(f"c{i}", date=None) for i in range(3)]
    findings, score = score_document_quality(claims, [], [])
    assert _codes(findings) == ["OPINION_LACKS_DATES", "HUMAN_EXPERT_REQUIRED"]
    lacks = findings[0]
    assert lacks.severity == Severity.CRITICAL
    assert lacks.related_claim_ids == ["c0", "c1", "c2"]
    assert lacks.basis == ["metric: share of claims with a date", "affected claims: c0, c1, c2"]
    assert score == 75


def test_weak_traceability():
    claims = [Claim(id="c1", type="Diagnosis", value="lumbar disc herniation confirmed", date="2023-01-01")]
    findings, _ = score_document_quality(claims, [], [])
    assert findings[0].code == "OPINION_WEAK_TRACEABILITY"
    assert findings[0].severity == Severity.CRITICAL


def test_general_claims():
    claims = [_claim("c1", type="Note", value="general condition")] * 2 + [_claim("c2")]
    findings, _ = score_document_quality(claims, [], [])
    general = [f for f in findings if f.code == "OPINION_TOO_GENERAL"]
    assert general[0].severity == Severity.WARNING


def test_weak_evidence_share():
    weak = _claim("c1").model_copy(update={"evidence_quality": EvidenceQuality.LOW})
    findings, _ = score_document_quality([weak, _claim("c2")], [], [])
    assert [f.severity for f in findings if f.code == "OPINION_WEAK_EVIDENCE"] == [Severity.INFO]


def test_conflicting_disability_levels():
    claims = [
        _claim("d1", type="Disability", value="20% permanent disability"),
        _claim("d2", type="Disability", value="35% disability"),
    ]
    findings, _ = score_document_quality(claims, [], [])
    contradictions = [f for f in findings if f.code == "OPINION_INTERNAL_CONTRADICTIONS"]
    assert len(contradictions) == 1
    assert contradictions[0].related_claim_ids == ["d1", "d2"]


def test_fragmented_timeline():
    timeline = [_event("e1", "2020-01-01"), _event("e2", "2021-01-01"), _event("e3", "2022-01-01")]
    findings, _ = score_document_quality([_claim("c1")], timeline, [])
    fragmented = [f for f in findings if f.code == "OPINION_FRAGMENTED_TIMELINE"]
    assert fragmented[0].severity == Severity.WARNING
    assert count_timeline_gaps(timeline, 180) == 2


def test_flag_overload_escalates():
    flags = [Flag(code=f"F{i}", message="m", severity=Severity.CRITICAL) for i in range(3)]
    findings, _ = score_document_quality([_claim("c1")], [], flags)
    assert "OPINION_FLAG_OVERLOAD" in _codes(findings)
    assert _codes(findings)[-1] == "HUMAN_EXPERT_REQUIRED"


def test_low_ocr_flag_requires_human_expert():
    flags = [Flag(code="OCR_LOW_CONFIDENCE_SECTION", message="low", severity=Severity.WARNING)]
    findings, _ = score_document_quality([_claim("c1")], [_event("e1", "2023-01-01")], flags)
    assert _codes(findings) == ["HUMAN_EXPERT_REQUIRED"]
    expert = findings[0]
    assert expert.severity == Severity.CRITICAL
    assert expert.assertion_type == AssertionType.POSSIBILITY
    assert expert.reliability.level == EvidenceQuality.MEDIUM
    assert expert.caution == LEGAL_DISCLAIMER


def test_critical_reasoning_escalates_and_lowers_score():
    reasoning = [Flag(code="MISSING_KEY_TEST_CARDIO", message="m", severity=Severity.CRITICAL)]
    findings, score = score_document_quality([_claim("c1")], [_event("e1", "2023-01-01")], [], reasoning)
    assert _codes(findings) == ["HUMAN_EXPERT_REQUIRED"]
    assert score < 100


def test_score_always_in_range():
    claim_sets = [
        [_claim("c1")],
        [Claim(id="x", type="Note", value="x")] * 4,
        [_claim("d1", type="Disability", value="10%"), _claim("d2", type="Disability", value="90%", date=None)],
    ]
    timelines = [[], [_event("e1", None)], [_event("e1", "2000-01-01"), _event("e2", "2020-01-01")]]
    flag_sets = [[], [Flag(code="X", message="m", severity=Severity.CRITICAL)] * 6]
    for claims, timeline, flags in itertools.product(claim_sets, timelines, flag_sets):
        _, score = score_document_quality(claims, timeline, flags, flags)
        assert isinstance(score, int)
        assert 0 <= score <= 100


def test_generic_claim_detection():
    assert is_generic_claim(Claim(type="Note", value="seen today"))
    assert is_generic_claim(Claim(value="abc"))
    assert is_generic_claim(Claim(type="Exam", value="unspecified findings"))
    assert not is_generic_claim(Claim(type="Diagnosis", value="lumbar strain"))
