"""
Step 2 — Text acquisition (embedded text first, dual-pass OCR fallback).
If the strategy selector keeps the document on the base path and the embedded
text is long enough, return it without touching the OCR port. Otherwise OCR the
raw document and a cleaned, re-rasterized copy, and keep whichever scores better.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from apps.worker.ocr.client import OcrPort
from apps.worker.ocr.preprocess import preprocess_image
from apps.worker.ocr.renderer import assemble_pdf, render_pages
from apps.worker.ocr.strategy import select_strategy
from apps.worker.quality.text_quality import compute_ocr_metrics
from apps.worker.steps.step01_text_extract import parse_pdf_locally
from packages.shared.models import (
    AnalysisConfig,
    ExtractionComparison,
    ExtractionMode,
    ExtractionResult,
    LocalParse,
    OcrMetrics,
    RenderedPage,
)

logger = logging.getLogger(__name__)

PdfParser = Callable[[bytes], LocalParse]
PageRenderer = Callable[..., list[RenderedPage]]
ImagePreprocessor = Callable[[bytes], bytes]


@dataclass
class _DualPass:
    base_text: str
    base_metrics: OcrMetrics
    enhanced_text: Optional[str]
    enhanced_metrics: Optional[OcrMetrics]

    @property
    def enhanced_wins(self) -> bool:
        if self.enhanced_metrics is None:
            return False
        return self.enhanced_metrics.score >= self.base_metrics.score


def _run_dual_pass(
    data: bytes,
    ocr_port: OcrPort,
    cfg: AnalysisConfig,
    page_renderer: PageRenderer,
    image_preprocessor: ImagePreprocessor,
) -> _DualPass:
    base_text = ocr_port.analyze(data)
    base_metrics = compute_ocr_metrics(base_text)
    logger.info(f"OCR base pass: score={base_metrics.score:.2f}, chars={len(base_text)}")

    try:
        pages = page_renderer(data, dpi=cfg.render_dpi, max_pages=cfg.max_render_pages, transform=image_preprocessor)
    except RuntimeError as exc:
        # fitz open/render errors (FileDataError, EmptyFileError) are RuntimeError subclasses
        logger.warning(f"Page rendering failed, skipping enhanced pass: {exc}")
        pages = []
    if not pages:
        return _DualPass(base_text, base_metrics, None, None)

    rebuilt = assemble_pdf([p.png for p in pages])
    enhanced_text = ocr_port.analyze(rebuilt)
    enhanced_metrics = compute_ocr_metrics(enhanced_text)
    logger.info(f"OCR enhanced pass: score={enhanced_metrics.score:.2f}, chars={len(enhanced_text)}, pages={len(pages)}")
    return _DualPass(base_text, base_metrics, enhanced_text, enhanced_metrics)


def run_extraction(
    data: bytes,
    *,
    ocr_port: OcrPort,
    force_enhanced: bool = False,
    byte_size: int | None = None,
    config: AnalysisConfig | None = None,
    pdf_parser: PdfParser | None = None,
    page_renderer: PageRenderer | None = None,
    image_preprocessor: ImagePreprocessor | None = None,
) -> ExtractionResult:
    """
    Extract the best available text for a document.

    OCR port errors (``OcrConfigMissing``, ``OcrEmpty``, ``OcrServiceError``) propagate
    unchanged; there is no fallback text and no retry.
    """
    cfg = config or AnalysisConfig()
    parser = pdf_parser or parse_pdf_locally
    renderer = page_renderer or render_pages
    preprocessor = image_preprocessor or preprocess_image

    local = parser(data)
    local_text = (local.text or "").strip()
    local_metrics = compute_ocr_metrics(local_text)
    page_count = max(1, local.page_count)

    decision = select_strategy(
        local_text,
        page_count=page_count,
        byte_size=len(data) if byte_size is None else byte_size,
        force_enhanced=force_enhanced,
        config=cfg,
    )

    if decision.mode == ExtractionMode.BASE and len(local_text) > cfg.base_text_min_length:
        return ExtractionResult(
            text=local_text,
            mode=ExtractionMode.BASE,
            metrics=local_metrics,
            page_count=page_count,
            comparison=ExtractionComparison(base_score=local_metrics.score),
        )

    dual = _run_dual_pass(data, ocr_port, cfg, renderer, preprocessor)
    enhanced_score = dual.enhanced_metrics.score if dual.enhanced_metrics else None

    if dual.enhanced_wins:
        logger.info("Extraction result: enhanced pass selected")
        return ExtractionResult(
            text=dual.enhanced_text,
            mode=ExtractionMode.ENHANCED,
            metrics=dual.enhanced_metrics,
            page_count=page_count,
            comparison=ExtractionComparison(base_score=dual.base_metrics.score, enhanced_score=enhanced_score),
        )

    if local_text:
        logger.info("Extraction result: base pass won, keeping embedded text")
        return ExtractionResult(
            text=local_text,
            mode=ExtractionMode.BASE,
            metrics=local_metrics,
            page_count=page_count,
            comparison=ExtractionComparison(base_score=local_metrics.score, enhanced_score=enhanced_score),
        )

    logger.info("Extraction result: base OCR pass selected")
    return ExtractionResult(
        text=dual.base_text,
        mode=ExtractionMode.BASE,
        metrics=dual.base_metrics,
        page_count=page_count,
        comparison=ExtractionComparison(base_score=dual.base_metrics.score, enhanced_score=enhanced_score),
    )
