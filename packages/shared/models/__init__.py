from .enums import (
    QUALITY_ORDER,
    AssertionType,
    DatePrecision,
    EvidenceQuality,
    ExtractionMode,
    Severity,
)
from .common import LEGAL_DISCLAIMER, CamelModel, ClaimSource, Reliability
from .domain import (
    AnalysisConfig,
    Claim,
    DocumentAnnotations,
    DocumentScore,
    ExtractionComparison,
    ExtractionResult,
    Finding,
    Flag,
    IngestionResult,
    LexicalLine,
    LocalParse,
    OcrMetrics,
    RenderedPage,
    StoredDocument,
    StrategyDecision,
    TimelineEvent,
    TimelineReference,
)
