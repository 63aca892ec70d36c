"""
Pre-flight decision between plain embedded-text extraction and the enhanced OCR pass.
"""
from __future__ import annotations

import logging

from apps.worker.quality.text_quality import weird_ratio
from packages.shared.models import AnalysisConfig, ExtractionMode, StrategyDecision

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


def select_strategy(
    text_sample: str | None,
    page_count: int,
    byte_size: int,
    force_enhanced: bool = False,
    config: AnalysisConfig | None = None,
) -> StrategyDecision:
    cfg = config or AnalysisConfig()
    if force_enhanced:
        return StrategyDecision(mode=ExtractionMode.ENHANCED, reason="force_enhanced")

    sample = (text_sample or "").strip()
    pages = max(1, page_count or 0)
    density = len(sample) / pages
    weird = weird_ratio(sample)
    size_mb = byte_size / _BYTES_PER_MB

    if density < cfg.min_text_density or weird > cfg.max_weird_ratio or size_mb > cfg.max_file_size_mb:
        decision = StrategyDecision(
            mode=ExtractionMode.ENHANCED,
            reason="low_density_or_noisy",
            density=density,
            weird_ratio=weird,
        )
    else:
        decision = StrategyDecision(
            mode=ExtractionMode.BASE,
            reason="textual_pdf",
            density=density,
            weird_ratio=weird,
        )
    logger.info(
        f"Extraction strategy: {decision.mode.value} ({decision.reason}; "
        f"density={density:.1f}, weird={weird:.3f}, size={size_mb:.2f}MB)"
    )
    return decision
