"""
Step 4 — Timeline construction.
Turns evaluated claims into chronologically ordered events: resolve a date per
claim, classify the event type, merge nearby events on the same subject, flag
gaps and dense periods, and hide generic or weakly evidenced entries.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from packages.shared.models import (
    AnalysisConfig,
    Claim,
    ClaimSource,
    DatePrecision,
    EvidenceQuality,
    Flag,
    Severity,
    TimelineEvent,
    TimelineReference,
)
from packages.shared.utils.claim_utils import find_date_in_text, parse_date_value, stable_id

logger = logging.getLogger(__name__)

# Matched against "type value snippet", first match wins.
ADVANCED_TYPE_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"(medication|antibiotic|steroid|capsule|tablet)", re.IGNORECASE), "MEDICATION"),
    (re.compile(r"(\bct\b|\bmri\b|x-?ray|ultrasound|radiolog|imaging)", re.IGNORECASE), "IMAGING"),
    (re.compile(r"(physio|rehab|therapeutic exercise)", re.IGNORECASE), "PHYSIOTHERAPY"),
    (re.compile(r"(follow[\s-]?up|followup)", re.IGNORECASE), "FOLLOW_UP"),
]

# Matched against the declared claim type only.
FALLBACK_TYPE_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"surgery", re.IGNORECASE), "SURGERY"),
    (re.compile(r"hospital", re.IGNORECASE), "HOSPITALIZATION"),
    (re.compile(r"exam", re.IGNORECASE), "EXAMINATION"),
    (re.compile(r"disability", re.IGNORECASE), "DISABILITY"),
]

SUBJECT_GROUP = {
    "SURGERY": "procedure",
    "HOSPITALIZATION": "procedure",
    "MEDICATION": "treatment",
    "PHYSIOTHERAPY": "treatment",
    "FOLLOW_UP": "follow",
    "EXAMINATION": "diagnostics",
    "IMAGING": "diagnostics",
    "DISABILITY": "assessment",
    "EVENT": "general",
}

GENERIC_TERMS = ("event", "note", "record", "document", "summary")
MIN_DESCRIPTION_LENGTH = 6
DEFAULT_DESCRIPTION = "event"
MERGE_BULLET = "\n• "


@dataclass
class _Draft:
    id: str
    date: Optional[str]
    date_precision: DatePrecision
    anchor: Optional[date]
    type: str
    description: str
    source: Optional[ClaimSource]
    references: list[TimelineReference]
    order: list[int]
    aggregated_count: int = 1
    hidden: bool = False

    def to_event(self) -> TimelineEvent:
        return TimelineEvent(
            id=self.id,
            date=self.date,
            date_precision=self.date_precision,
            type=self.type,
            description=self.description,
            source=self.source,
            references=list(self.references),
            aggregated_count=self.aggregated_count,
            hidden=self.hidden,
        )


def classify_event_type(claim: Claim) -> str:
    snippet = claim.source.snippet if claim.source else None
    haystack = f"{claim.type or ''} {claim.value or ''} {snippet or ''}".lower()
    for pattern, label in ADVANCED_TYPE_RULES:
        if pattern.search(haystack):
            return label
    for pattern, label in FALLBACK_TYPE_RULES:
        if pattern.search(claim.type or ""):
            return label
    return "EVENT"


def subject_of(event_type: str) -> str:
    return SUBJECT_GROUP.get(event_type, event_type)


def resolve_claim_date(claim: Claim) -> tuple[Optional[str], DatePrecision, Optional[date]]:
    """Explicit date first (whole value, then pattern search), then value, snippet and type."""
    parsed = parse_date_value(claim.date)
    if parsed:
        anchor, precision = parsed
        if precision == DatePrecision.DAY:
            return anchor.isoformat(), precision, anchor
        if precision == DatePrecision.MONTH:
            return anchor.strftime("%Y-%m"), precision, anchor
        return str(anchor.year), precision, anchor

    snippet = claim.source.snippet if claim.source else None
    for text in (claim.date, claim.value, snippet, claim.type):
        found = find_date_in_text(text)
        if found:
            value, precision, anchor = found
            return value, precision, anchor
    return None, DatePrecision.UNKNOWN, None


def is_generic_description(description: str, event_type: str) -> bool:
    normalized = description.strip().lower()
    if len(normalized) < MIN_DESCRIPTION_LENGTH:
        return True
    if event_type == "EVENT":
        return True
    return any(normalized == term or normalized.startswith(f"{term} ") for term in GENERIC_TERMS)


def _should_merge(prev: _Draft, current: _Draft, cfg: AnalysisConfig) -> bool:
    if subject_of(prev.type) != subject_of(current.type):
        return False
    if prev.anchor is None or current.anchor is None:
        return False
    if abs((current.anchor - prev.anchor).days) <= cfg.grouping_window_days:
        return True
    if prev.date_precision == current.date_precision and prev.date_precision in (DatePrecision.YEAR, DatePrecision.MONTH):
        return prev.date == current.date
    return False


def _attach_hidden_references(drafts: list[_Draft]) -> None:
    visible = [d for d in drafts if not d.hidden]
    if not visible:
        return

    def nearest(draft: _Draft) -> _Draft:
        if draft.anchor is None:
            return visible[0]
        best: Optional[_Draft] = None
        best_diff: Optional[int] = None
        for candidate in visible:
            if candidate.anchor is None:
                continue
            diff = abs((candidate.anchor - draft.anchor).days)
            if best_diff is None or diff < best_diff:
                best, best_diff = candidate, diff
        return best or visible[0]

    for draft in drafts:
        if draft.hidden:
            target = nearest(draft)
            target.references = target.references + draft.references


def build_timeline(
    claims: list[Claim],
    config: AnalysisConfig | None = None,
) -> tuple[list[TimelineEvent], list[Flag]]:
    """
    Returns (events, flags). Dated events come first in chronological order,
    undated events follow in claim order. Hidden events are kept and marked.
    """
    cfg = config or AnalysisConfig()
    flags: list[Flag] = []

    drafts: list[_Draft] = []
    for index, claim in enumerate(claims):
        value, precision, anchor = resolve_claim_date(claim)
        if precision == DatePrecision.UNKNOWN:
            flags.append(Flag(
                code="EVENT_WITHOUT_DATE",
                message=f"Event without a date ({claim.type or 'unknown'})",
                severity=Severity.INFO,
                related_claim_ids=[claim.id] if claim.id else None,
            ))
        event_type = classify_event_type(claim)
        description = (claim.value or claim.type or DEFAULT_DESCRIPTION).strip() or DEFAULT_DESCRIPTION
        quality = claim.evidence_quality or EvidenceQuality.HIGH
        drafts.append(_Draft(
            id=claim.id or stable_id([str(index), claim.type or "", description, value or ""]),
            date=value,
            date_precision=precision,
            anchor=anchor,
            type=event_type,
            description=description,
            source=claim.source,
            references=[TimelineReference(id=claim.id, description=description, source=claim.source)],
            order=[index],
            hidden=is_generic_description(description, event_type) or quality == EvidenceQuality.LOW,
        ))

    dated = sorted((d for d in drafts if d.anchor is not None), key=lambda d: d.anchor)
    undated = [d for d in drafts if d.anchor is None]

    grouped: list[_Draft] = []
    for draft in dated:
        last = grouped[-1] if grouped else None
        if last is not None and _should_merge(last, draft, cfg):
            last.description = f"{last.description}{MERGE_BULLET}{draft.description}"
            last.references = last.references + draft.references
            last.aggregated_count += draft.aggregated_count
            last.order = last.order + draft.order
            last.hidden = last.hidden and draft.hidden
            if draft.date_precision == DatePrecision.DAY and last.date_precision != DatePrecision.DAY:
                last.date = draft.date
                last.date_precision = DatePrecision.DAY
                last.anchor = draft.anchor
        else:
            grouped.append(replace(draft, references=list(draft.references), order=list(draft.order)))

    undated_positions = [d.order[0] for d in undated]

    def undated_between(prev: _Draft, nxt: _Draft) -> bool:
        lo, hi = min(prev.order), min(nxt.order)
        return any(lo < pos < hi for pos in undated_positions)

    for prev, current in zip(grouped, grouped[1:]):
        delta = (current.anchor - prev.anchor).days
        if delta > cfg.gap_threshold_days:
            flags.append(Flag(
                code="TIMELINE_GAP",
                message=f"Gap of {delta} days between {prev.date or 'unknown date'} and {current.date or 'unknown date'}",
                severity=Severity.INFO if undated_between(prev, current) else Severity.WARNING,
            ))

    for i, start in enumerate(dated):
        count = 1
        for nxt in dated[i + 1:]:
            if (nxt.anchor - start.anchor).days <= cfg.dense_window_days:
                count += 1
            else:
                break
        if count >= cfg.dense_event_threshold:
            flags.append(Flag(
                code="DENSE_PERIOD",
                message=f"{count} events within {cfg.dense_window_days} days (starting {start.date or 'unknown date'})",
                severity=Severity.WARNING,
            ))
            break

    combined = grouped + undated
    _attach_hidden_references(combined)
    events = [d.to_event() for d in combined]

    hidden_count = sum(1 for e in events if e.hidden)
    if events and hidden_count / len(events) > cfg.hidden_event_ratio:
        flags.append(Flag(
            code="TIMELINE_TOO_GENERIC",
            message=f"More than {round(cfg.hidden_event_ratio * 100)}% of timeline events are generic or hidden",
            severity=Severity.WARNING,
        ))

    logger.info(f"Timeline: {len(events)} events ({hidden_count} hidden) from {len(claims)} claims, {len(flags)} flags")
    return events, flags


def visible_events(events: list[TimelineEvent]) -> list[TimelineEvent]:
    return [e for e in events if not e.hidden]
