"""
Rasterize PDF pages for the enhanced pass and rebuild a synthetic PDF from the cleaned images.
"""
from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import fitz  # PyMuPDF

from packages.shared.models import RenderedPage

logger = logging.getLogger(__name__)

_OCR_WORKERS = int(os.getenv("OCR_WORKERS", "0"))


def _pool_size(page_total: int) -> int:
    cap = _OCR_WORKERS if _OCR_WORKERS > 0 else (os.cpu_count() or 1)
    return max(1, min(cap, page_total))


def _render_one(
    data: bytes,
    index: int,
    dpi: int,
    transform: Optional[Callable[[bytes], bytes]],
) -> RenderedPage:
    # PyMuPDF documents are not thread-safe; every worker opens its own handle.
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        pix = doc[index].get_pixmap(dpi=dpi)
        png = pix.tobytes("png")
    finally:
        doc.close()
    if transform is not None:
        png = transform(png)
    return RenderedPage(page_number=index + 1, png=png)


def render_pages(
    data: bytes,
    dpi: int = 300,
    max_pages: int = 10,
    transform: Optional[Callable[[bytes], bytes]] = None,
) -> list[RenderedPage]:
    """
    Render up to ``max_pages`` pages as PNG, optionally passing each through ``transform``
    inside the worker. Results come back in page order.
    """
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        total = min(doc.page_count, max_pages)
    finally:
        doc.close()
    if total <= 0:
        return []

    workers = _pool_size(total)
    logger.info(f"Rendering {total} page(s) at {dpi} dpi (workers={workers})")
    if workers == 1:
        return [_render_one(data, i, dpi, transform) for i in range(total)]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(lambda i: _render_one(data, i, dpi, transform), range(total)))


def assemble_pdf(images: list[bytes]) -> bytes:
    """One page per image, sized to the image, in the given order."""
    out = fitz.open()
    try:
        for png in images:
            with fitz.open(stream=png, filetype="png") as img_doc:
                rect = img_doc[0].rect
            page = out.new_page(width=rect.width, height=rect.height)
            page.insert_image(page.rect, stream=png)
        return out.tobytes()
    finally:
        out.close()
