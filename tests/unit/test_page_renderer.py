from __future__ import annotations

import fitz  # PyMuPDF

import apps.worker.ocr.renderer as renderer
from apps.worker.ocr.renderer import assemble_pdf, render_pages


def _pdf(pages: int) -> bytes:
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=200, height=200)
        page.insert_text((20, 50), f"Page {i + 1}")
    data = doc.tobytes()
    doc.close()
    return data


def test_render_pages_in_order_and_capped():
    pages = render_pages(_pdf(3), dpi=72, max_pages=2)
    assert [p.page_number for p in pages] == [1, 2]
    assert all(p.png.startswith(b"\x89PNG") for p in pages)


def test_render_pages_applies_transform(monkeypatch):
    monkeypatch.setattr(renderer, "_OCR_WORKERS", 2)
    pages = render_pages(_pdf(3), dpi=72, transform=lambda png: b"clean:" + png)
    assert [p.page_number for p in pages] == [1, 2, 3]
    assert all(p.png.startswith(b"clean:") for p in pages)


def test_single_worker_matches_pool(monkeypatch):
    data = _pdf(2)
    monkeypatch.setattr(renderer, "_OCR_WORKERS", 1)
    serial = render_pages(data, dpi=72)
    monkeypatch.setattr(renderer, "_OCR_WORKERS", 4)
    pooled = render_pages(data, dpi=72)
    assert [p.png for p in serial] == [p.png for p in pooled]


def test_assemble_pdf_one_page_per_image():
    pages = render_pages(_pdf(2), dpi=72)
    rebuilt = assemble_pdf([p.png for p in pages])
    doc = fitz.open(stream=rebuilt, filetype="pdf")
    try:
        assert doc.page_count == 2
        assert all(page.get_images() for page in doc)
    finally:
        doc.close()
