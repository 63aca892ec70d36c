from enum import Enum


class EvidenceQuality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AssertionType(str, Enum):
    FACT = "FACT"
    INTERPRETATION = "INTERPRETATION"
    POSSIBILITY = "POSSIBILITY"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class DatePrecision(str, Enum):
    DAY = "day"
    MONTH = "month"
    YEAR = "year"
    UNKNOWN = "unknown"


class ExtractionMode(str, Enum):
    BASE = "base"  # embedded text layer or OCR of the raw document
    ENHANCED = "enhanced"  # OCR of the rendered + preprocessed pages


# Ordered high -> low; index is the number of downgrades applied.
QUALITY_ORDER: tuple[EvidenceQuality, ...] = (
    EvidenceQuality.HIGH,
    EvidenceQuality.MEDIUM,
    EvidenceQuality.LOW,
)
