"""
Fatal error types for the extraction layer.

Data-quality problems are never raised; they surface as flags, findings or
evidence downgrades. Only configuration/service failures of the OCR port are
exceptions, and they are not retried inside the pipeline.
"""
from __future__ import annotations


class OcrError(RuntimeError):
    code = "ocr-error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class OcrConfigMissing(OcrError):
    code = "ocr-config-missing"


class OcrEmpty(OcrError):
    code = "ocr-empty"


class OcrServiceError(OcrError):
    code = "ocr-service-error"


class TextExtractionFailed(ValueError):
    code = "text-extraction-failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class DocumentNotFound(LookupError):
    pass
