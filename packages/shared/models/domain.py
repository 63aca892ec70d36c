import logging
import os
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .common import (
    LEGAL_DISCLAIMER,
    CamelModel,
    ClaimSource,
    Reliability,
    coerce_optional_str,
)
from .enums import (
    AssertionType,
    DatePrecision,
    EvidenceQuality,
    ExtractionMode,
    Severity,
)

logger = logging.getLogger(__name__)


class Claim(CamelModel):
    """A single extracted medical-legal assertion, as produced by the upstream extraction step."""
    id: Optional[str] = None
    type: Optional[str] = None
    value: Optional[str] = None
    unit: Optional[str] = None
    date: Optional[str] = None
    confidence: Optional[float] = None
    source: Optional[ClaimSource] = None
    evidence_quality: Optional[EvidenceQuality] = None
    evidence_notes: Optional[str] = None
    assertion_type: Optional[AssertionType] = None
    basis: Optional[list[str]] = None
    missing_evidence: Optional[list[str]] = None
    reliability: Optional[Reliability] = None
    caution: Optional[str] = None

    @field_validator("id", "type", "value", "unit", "date", mode="before")
    @classmethod
    def _scalars(cls, v: Any) -> Any:
        return coerce_optional_str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> Any:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        return v

    @field_validator("source", mode="before")
    @classmethod
    def _source(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, ClaimSource)) else None


class Flag(CamelModel):
    """Shared shape of timeline/evidence flags and of quality/reasoning findings."""
    code: str = "UNKNOWN"
    message: str = ""
    severity: Severity = Severity.INFO
    related_claim_ids: Optional[list[str]] = None
    domain: Optional[str] = None
    assertion_type: Optional[AssertionType] = None
    basis: Optional[list[str]] = None
    missing_evidence: Optional[list[str]] = None
    reliability: Optional[Reliability] = None
    caution: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v: Any) -> Any:
        if isinstance(v, Severity):
            return v
        if isinstance(v, str) and v in {s.value for s in Severity}:
            return v
        return Severity.INFO

    @model_validator(mode="after")
    def _critical_needs_caution(self) -> "Flag":
        if self.severity == Severity.CRITICAL and not (self.caution or "").strip():
            self.caution = LEGAL_DISCLAIMER
        return self


Finding = Flag


class TimelineReference(CamelModel):
    id: Optional[str] = None
    description: Optional[str] = None
    source: Optional[ClaimSource] = None


class TimelineEvent(CamelModel):
    id: str
    date: Optional[str] = None
    date_precision: DatePrecision = DatePrecision.UNKNOWN
    type: str = "EVENT"
    description: str = ""
    source: Optional[ClaimSource] = None
    references: list[TimelineReference] = Field(default_factory=list)
    aggregated_count: int = Field(default=1, ge=1)
    hidden: bool = False


# ── Extraction ───────────────────────────────────────────────────────────


class OcrMetrics(CamelModel):
    score: float = Field(ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)


class ExtractionComparison(CamelModel):
    base_score: float = Field(ge=0.0, le=1.0)
    enhanced_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ExtractionResult(CamelModel):
    text: str
    mode: ExtractionMode
    metrics: OcrMetrics
    page_count: int = Field(ge=1)
    comparison: ExtractionComparison


class StrategyDecision(CamelModel):
    mode: ExtractionMode
    reason: str
    density: float = 0.0
    weird_ratio: float = 0.0


class LocalParse(CamelModel):
    """Embedded text layer read without any network call."""
    text: str = ""
    page_count: int = Field(default=1, ge=1)


class RenderedPage(BaseModel):
    page_number: int = Field(ge=1)
    png: bytes


class LexicalLine(CamelModel):
    page: Optional[int] = None
    line_number: Optional[int] = None
    text: str = ""

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Any:
        return coerce_optional_str(v) or ""


# ── Stored document / annotation set ─────────────────────────────────────


class DocumentScore(CamelModel):
    """Score object written at ingestion: {value, breakdown: {ocr: number | {value, reasons, mode}}}."""
    value: Optional[float] = None
    breakdown: dict[str, Any] = Field(default_factory=dict)

    def ocr_score(self) -> Optional[float]:
        ocr = self.breakdown.get("ocr")
        if isinstance(ocr, bool):
            return None
        if isinstance(ocr, (int, float)):
            return float(ocr)
        if isinstance(ocr, dict):
            value = ocr.get("value")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
        return None

    def ocr_reasons(self) -> list[str]:
        ocr = self.breakdown.get("ocr")
        if isinstance(ocr, dict) and isinstance(ocr.get("reasons"), list):
            return [str(r) for r in ocr["reasons"]]
        return []


def _mapping_items(values: Any, field: str) -> list:
    if not isinstance(values, list):
        return []
    kept = [v for v in values if isinstance(v, (dict, BaseModel))]
    if len(kept) != len(values):
        logger.warning(f"Dropped {len(values) - len(kept)} malformed entries from stored '{field}'")
    return kept


class StoredDocument(CamelModel):
    """The storage collaborator's view of a document before re-analysis."""
    id: str
    claims: list[Claim] = Field(default_factory=list)
    flags: list[Flag] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    quality_findings: list[Flag] = Field(default_factory=list)
    medical_quality_score: int = 0
    reasoning_findings: list[Flag] = Field(default_factory=list)
    score: Optional[DocumentScore] = None
    ocr_mode: ExtractionMode = ExtractionMode.BASE
    ocr_lexical_map: list[LexicalLine] = Field(default_factory=list)

    @field_validator(
        "claims", "flags", "timeline", "quality_findings", "reasoning_findings", "ocr_lexical_map",
        mode="before",
    )
    @classmethod
    def _lists(cls, v: Any, info) -> list:
        return _mapping_items(v, info.field_name)

    @field_validator("medical_quality_score", mode="before")
    @classmethod
    def _stored_score(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0
        return int(round(v))

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, DocumentScore)) else None

    @field_validator("ocr_mode", mode="before")
    @classmethod
    def _ocr_mode(cls, v: Any) -> Any:
        if isinstance(v, ExtractionMode) or (isinstance(v, str) and v in {m.value for m in ExtractionMode}):
            return v
        return ExtractionMode.BASE


class DocumentAnnotations(CamelModel):
    """Consumer surface: annotated claims plus every derived field."""
    id: str
    claims: list[Claim]
    flags: list[Flag]
    timeline: list[TimelineEvent]
    quality_findings: list[Flag]
    medical_quality_score: int = Field(ge=0, le=100)
    reasoning_findings: list[Flag]
    ocr_mode_used: ExtractionMode


class IngestionResult(CamelModel):
    extraction: ExtractionResult
    score: DocumentScore
    ocr_mode: ExtractionMode
    ocr_lexical_map: list[LexicalLine] = Field(default_factory=list)


# ── Configuration ────────────────────────────────────────────────────────


class AnalysisConfig(BaseModel):
    """Thresholds for every pipeline stage. Any field can be overridden from an env var of the same name, upper-cased."""
    # Strategy selection
    min_text_density: float = 350.0  # chars per page
    max_weird_ratio: float = 0.25
    max_file_size_mb: float = 8.0
    base_text_min_length: int = 200
    # Enhanced pass
    render_dpi: int = Field(default=300, ge=36)
    max_render_pages: int = Field(default=10, ge=1)
    # Evidence evaluation
    evidence_ocr_threshold: float = 0.55
    ocr_low_confidence_threshold: float = 0.5
    weak_evidence_warning_ratio: float = 0.4
    min_claim_words: int = 3
    # Timeline
    gap_threshold_days: int = Field(default=180, ge=1)
    grouping_window_days: int = Field(default=30, ge=0)
    dense_window_days: int = Field(default=30, ge=0)
    dense_event_threshold: int = Field(default=4, ge=2)
    hidden_event_ratio: float = 0.3

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "AnalysisConfig":
        env = os.environ if environ is None else environ
        overrides = {
            name: env[name.upper()]
            for name in cls.model_fields
            if env.get(name.upper(), "").strip()
        }
        return cls.model_validate(overrides)
