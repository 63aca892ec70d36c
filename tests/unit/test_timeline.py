"""
Unit tests for timeline construction (Step 4).
"""
from __future__ import annotations

from apps.worker.steps.step04_timeline import (
    build_timeline,
    classify_event_type,
    is_generic_description,
    resolve_claim_date,
    visible_events,
)
from packages.shared.models import AnalysisConfig, Claim, DatePrecision, EvidenceQuality, Severity


def _exam(claim_id: str, date: str | None, label: str = "orthopedic examination visit") -> Claim:
    return Claim(id=claim_id, type="Examination", value=f"{label} {claim_id}", date=date)


def _by_code(flags, code):
    return [f for f in flags if f.code == code]


class TestGroupingAndGaps:
    def _claims(self):
        dates = ["2023-01-01", "2023-01-04", "2023-01-08", "2023-01-12", "2023-01-15", "2024-08-15"]
        claims = [_exam(f"c{i}", d) for i, d in enumerate(dates)]
        claims.append(Claim(id="u1", type="Examination", value="orthopedic examination without date"))
        return claims

    def test_close_events_merge(self):
        events, _ = build_timeline(self._claims())
        assert len(events) == 3
        grouped = events[0]
        assert grouped.aggregated_count == 5
        assert grouped.date == "2023-01-01"
        assert grouped.date_precision == DatePrecision.DAY
        assert grouped.description.count("\n• ") == 4
        assert [r.id for r in grouped.references] == ["c0", "c1", "c2", "c3", "c4"]
        assert events[1].date == "2024-08-15"
        assert events[2].date is None
        assert events[2].date_precision == DatePrecision.UNKNOWN

    def test_gap_dense_period_and_undated_flags(self):
        _, flags = build_timeline(self._claims())
        gaps = _by_code(flags, "TIMELINE_GAP")
        assert len(gaps) == 1
        assert gaps[0].severity == Severity.WARNING
        assert "592 days" in gaps[0].message

        dense = _by_code(flags, "DENSE_PERIOD")
        assert len(dense) == 1
        assert dense[0].message.startswith("5 events")

        undated = _by_code(flags, "EVENT_WITHOUT_DATE")
        assert len(undated) == 1
        assert undated[0].related_claim_ids == ["u1"]
        assert not _by_code(flags, "TIMELINE_TOO_GENERIC")

    def test_gap_with_undated_claim_between_is_info(self):
        claims = [
            _exam("a", "2020-01-01"),
            _exam("b", None),
            _exam("c", "2021-06-01"),
        ]
        _, flags = build_timeline(claims)
        gaps = _by_code(flags, "TIMELINE_GAP")
        assert len(gaps) == 1
        assert gaps[0].severity == Severity.INFO

    def test_different_subjects_do_not_merge(self):
        claims = [
            Claim(id="a", type="Surgery", value="arthroscopic knee repair", date="2023-01-01"),
            Claim(id="b", type="Medication", value="ibuprofen tablet 400mg", date="2023-01-02"),
        ]
        events, _ = build_timeline(claims)
        assert [e.type for e in events] == ["SURGERY", "MEDICATION"]

    def test_chronological_order(self):
        claims = [_exam("late", "2023-09-01"), _exam("early", "2022-01-01")]
        events, _ = build_timeline(claims)
        assert [e.id for e in events] == ["early", "late"]

    def test_three_events_in_window_are_not_dense(self):
        claims = [_exam("a", "2023-01-01"), _exam("b", "2023-01-10"), _exam("c", "2023-01-20")]
        _, flags = build_timeline(claims)
        assert not _by_code(flags, "DENSE_PERIOD")

    def test_two_dense_clusters_flag_once(self):
        days = ["01", "05", "10", "15"]
        claims = [_exam(f"a{d}", f"2023-01-{d}") for d in days] + [_exam(f"b{d}", f"2024-01-{d}") for d in days]
        _, flags = build_timeline(claims)
        dense = _by_code(flags, "DENSE_PERIOD")
        assert len(dense) == 1
        assert dense[0].message == "4 events within 30 days (starting 2023-01-01)"

    def test_custom_window(self):
        claims = [_exam("a", "2023-01-01"), _exam("b", "2023-01-20")]
        events, _ = build_timeline(claims, AnalysisConfig(grouping_window_days=10))
        assert len(events) == 2


class TestDates:
    def test_explicit_day(self):
        assert resolve_claim_date(Claim(date="March 5, 2023"))[:2] == ("2023-03-05", DatePrecision.DAY)

    def test_explicit_month(self):
        assert resolve_claim_date(Claim(date="2023-05"))[:2] == ("2023-05", DatePrecision.MONTH)

    def test_year_from_value(self):
        value, precision, anchor = resolve_claim_date(Claim(value="knee surgery in 2019"))
        assert (value, precision) == ("2019", DatePrecision.YEAR)
        assert anchor.isoformat() == "2019-01-01"

    def test_day_from_snippet(self):
        claim = Claim(value="knee surgery", source={"snippet": "operated on 2021-04-09 under GA"})
        assert resolve_claim_date(claim)[:2] == ("2021-04-09", DatePrecision.DAY)

    def test_no_date(self):
        assert resolve_claim_date(Claim(value="knee surgery")) == (None, DatePrecision.UNKNOWN, None)

    def test_same_month_events_merge(self):
        claims = [_exam("a", "2023-05"), _exam("b", "2023-05")]
        events, _ = build_timeline(claims)
        assert len(events) == 1
        assert events[0].date == "2023-05"
        assert events[0].date_precision == DatePrecision.MONTH

    def test_day_precision_upgrades_group(self):
        claims = [_exam("a", "2023-05"), _exam("b", "2023-05-20")]
        events, _ = build_timeline(claims)
        assert len(events) == 1
        assert events[0].date == "2023-05-20"
        assert events[0].date_precision == DatePrecision.DAY


class TestClassification:
    def test_advanced_rules(self):
        assert classify_event_type(Claim(type="Medication", value="ibuprofen tablet 400mg")) == "MEDICATION"
        assert classify_event_type(Claim(type="Finding", value="CT scan of the head")) == "IMAGING"
        assert classify_event_type(Claim(type="Treatment", value="rehab program")) == "PHYSIOTHERAPY"
        assert classify_event_type(Claim(type="Visit", value="follow-up with surgeon")) == "FOLLOW_UP"

    def test_short_keywords_need_word_boundaries(self):
        assert classify_event_type(Claim(type="Note", value="doctor visit")) == "EVENT"

    def test_fallback_on_type(self):
        assert classify_event_type(Claim(type="Surgery", value="arthroscopic knee repair")) == "SURGERY"
        assert classify_event_type(Claim(type="Hospitalization", value="admitted overnight")) == "HOSPITALIZATION"
        assert classify_event_type(Claim(type="Disability", value="20% permanent")) == "DISABILITY"

    def test_generic_descriptions(self):
        assert is_generic_description("note", "EXAMINATION")
        assert is_generic_description("record of visit", "EXAMINATION")
        assert is_generic_description("lumbar strain", "EVENT")
        assert not is_generic_description("lumbar strain", "EXAMINATION")


class TestHiddenEvents:
    def test_hidden_events_kept_and_referenced(self):
        visible = _exam("v1", "2023-01-10")
        weak = _exam("h1", "2023-03-12").model_copy(update={"evidence_quality": EvidenceQuality.LOW})
        far = _exam("v2", "2023-09-01")
        events, flags = build_timeline([visible, weak, far])

        assert [e.id for e in events] == ["v1", "h1", "v2"]
        assert [e.hidden for e in events] == [False, True, False]
        assert [r.id for r in events[0].references] == ["v1", "h1"]
        assert [e.id for e in visible_events(events)] == ["v1", "v2"]
        assert _by_code(flags, "TIMELINE_TOO_GENERIC")

    def test_undated_hidden_attaches_to_first_visible(self):
        claims = [_exam("v1", "2023-01-10"), _exam("v2", "2023-08-01"), Claim(id="n1", type="Note", value="note")]
        events, _ = build_timeline(claims)
        assert [r.id for r in events[0].references] == ["v1", "n1"]

    def test_equidistant_hidden_attaches_to_earlier_visible(self):
        weak = _exam("h", "2023-01-21").model_copy(update={"evidence_quality": EvidenceQuality.LOW})
        claims = [_exam("a", "2023-01-01"), weak, _exam("b", "2023-02-10")]
        events, _ = build_timeline(claims, AnalysisConfig(grouping_window_days=10))

        assert [e.id for e in events] == ["a", "h", "b"]
        assert [r.id for r in events[0].references] == ["a", "h"]
        assert [r.id for r in events[2].references] == ["b"]

    def test_generated_ids_are_stable(self):
        claims = [Claim(type="Surgery", value="arthroscopic knee repair", date="2023-01-01")]
        first, _ = build_timeline(claims)
        second, _ = build_timeline(claims)
        assert first[0].id == second[0].id
        assert len(first[0].id) == 16

    def test_empty_input(self):
        assert build_timeline([]) == ([], [])
