"""
Pipeline orchestrator — ingestion (text acquisition) and document refresh
(evidence → timeline → reasoning → quality) with diff-before-write persistence.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel

from apps.worker.lib.ocr_hardening import apply_ocr_hardening, should_trigger_ocr_hardening
from apps.worker.lib.specialty_rules import Rule
from apps.worker.ocr.client import OcrPort
from apps.worker.steps.step02_text_acquire import run_extraction
from apps.worker.steps.step03_claim_evidence import evaluate_claim_evidence
from apps.worker.steps.step04_timeline import build_timeline
from apps.worker.steps.step05_reasoning import analyze_reasoning
from apps.worker.steps.step06_quality import score_document_quality
from packages.shared.errors import DocumentNotFound, TextExtractionFailed
from packages.shared.models import (
    AnalysisConfig,
    DocumentAnnotations,
    DocumentScore,
    Flag,
    IngestionResult,
    LexicalLine,
    Severity,
    StoredDocument,
)

logger = logging.getLogger(__name__)

# Stored fields recomputed by a refresh, keyed by their camelCase storage name.
_DIFFED_FIELDS = (
    ("claims", "claims"),
    ("flags", "flags"),
    ("timeline", "timeline"),
    ("reasoningFindings", "reasoning_findings"),
)


class DocumentStore(Protocol):
    def load(self, document_id: str) -> Optional[Mapping[str, Any]]: ...

    def update(self, document_id: str, fields: dict[str, Any]) -> None: ...


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def serialize(value: Any) -> str:
    """Canonical JSON used for change detection and output comparison."""
    return json.dumps(to_jsonable(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def merge_flags(existing: Sequence[Flag], additions: Sequence[Flag]) -> list[Flag]:
    """Concatenate, keeping the first flag for each code/message pair."""
    seen: set[str] = set()
    merged: list[Flag] = []
    for flag in [*existing, *additions]:
        key = f"{flag.code}-{flag.message}"
        if key in seen:
            continue
        seen.add(key)
        merged.append(flag)
    return merged


def _hardening_flag(reasons: list[str]) -> Flag:
    if reasons:
        message = f"Low OCR quality detected ({' | '.join(reasons)}). Cross-check against the original scan."
    else:
        message = "Low OCR quality detected. Cross-check against the original scan."
    return Flag(code="OCR_LOW_CONFIDENCE_SECTION", message=message, severity=Severity.WARNING)


def analyze_document(
    stored: StoredDocument | Mapping[str, Any],
    config: AnalysisConfig | None = None,
    rule_sets: Sequence[Sequence[Rule]] | None = None,
) -> tuple[DocumentAnnotations, dict[str, Any]]:
    """
    Recompute every derived field of a stored document.
    Returns (annotations, changes) where ``changes`` holds only the storage fields
    whose canonical JSON differs from what is stored.
    """
    cfg = config or AnalysisConfig()
    if isinstance(stored, StoredDocument):
        doc = stored
        raw = stored.to_json_dict()
    else:
        raw = dict(stored)
        doc = StoredDocument.model_validate(raw)

    hardening = apply_ocr_hardening(doc.ocr_lexical_map)
    ocr_score = doc.score.ocr_score() if doc.score else None
    ocr_reasons = doc.score.ocr_reasons() if doc.score else []

    claims, evidence_flags = evaluate_claim_evidence(
        doc.claims,
        ocr_score=ocr_score,
        lexical_text=hardening.text or None,
        config=cfg,
    )
    timeline, timeline_flags = build_timeline(claims, cfg)

    flags = merge_flags(doc.flags, timeline_flags)
    flags = merge_flags(flags, evidence_flags)
    if should_trigger_ocr_hardening(ocr_score, flags):
        logger.info(f"Document {doc.id}: OCR hardening triggered (pass={hardening.chosen_pass.value})")
        flags = merge_flags(flags, [_hardening_flag(ocr_reasons)])

    reasoning = analyze_reasoning(claims, timeline, rule_sets)
    quality_findings, quality_score = score_document_quality(claims, timeline, flags, reasoning, cfg)

    annotations = DocumentAnnotations(
        id=doc.id,
        claims=claims,
        flags=flags,
        timeline=timeline,
        quality_findings=quality_findings,
        medical_quality_score=quality_score,
        reasoning_findings=reasoning,
        ocr_mode_used=doc.ocr_mode,
    )

    changes: dict[str, Any] = {}
    for key, attr in _DIFFED_FIELDS:
        value = getattr(annotations, attr)
        if serialize(value) != serialize(raw.get(key, [])):
            changes[key] = to_jsonable(value)
    if (
        serialize(quality_findings) != serialize(raw.get("qualityFindings", []))
        or raw.get("medicalQualityScore") != quality_score
    ):
        changes["qualityFindings"] = to_jsonable(quality_findings)
        changes["medicalQualityScore"] = quality_score

    return annotations, changes


def refresh_document(
    document_id: str,
    store: DocumentStore,
    config: AnalysisConfig | None = None,
    rule_sets: Sequence[Sequence[Rule]] | None = None,
) -> DocumentAnnotations:
    """Load, re-analyze and write back only what changed. Nothing is written when nothing changed."""
    record = store.load(document_id)
    if record is None:
        logger.error(f"Document {document_id} not found")
        raise DocumentNotFound(document_id)

    annotations, changes = analyze_document({"id": document_id, **record}, config, rule_sets)
    if changes:
        logger.info(f"Document {document_id}: updating {sorted(changes)}")
        store.update(document_id, changes)
    else:
        logger.info(f"Document {document_id}: no changes")
    return annotations


def build_lexical_map(text: str) -> list[LexicalLine]:
    lines = [line for line in (text or "").splitlines() if line.strip()]
    return [LexicalLine(line_number=i + 1, text=line) for i, line in enumerate(lines)]


def ingest_document(
    data: bytes,
    ocr_port: OcrPort,
    force_enhanced: bool = False,
    config: AnalysisConfig | None = None,
    **ports: Any,
) -> IngestionResult:
    """
    Acquire text for a new document and build its initial score breakdown.
    Extra keyword arguments are forwarded to ``run_extraction`` (parser/renderer overrides).
    """
    extraction = run_extraction(data, ocr_port=ocr_port, force_enhanced=force_enhanced, config=config, **ports)
    if not extraction.text.strip():
        logger.error("Text extraction produced no text")
        raise TextExtractionFailed()

    score = DocumentScore(
        value=extraction.metrics.score,
        breakdown={
            "ocr": {
                "value": extraction.metrics.score,
                "reasons": list(extraction.metrics.reasons),
                "mode": extraction.mode.value,
            },
            "ocrComparison": extraction.comparison.to_json_dict(),
        },
    )
    return IngestionResult(
        extraction=extraction,
        score=score,
        ocr_mode=extraction.mode,
        ocr_lexical_map=build_lexical_map(extraction.text),
    )
