from __future__ import annotations

import pytest

import apps.worker.steps.step02_text_acquire as acquire
from apps.worker.ocr.client import HttpOcrPort
from packages.shared.errors import OcrConfigMissing, OcrEmpty
from packages.shared.models import ExtractionMode, LocalParse, RenderedPage

GOOD_TEXT = "Patient presented with lower back pain after a fall at work. " * 5
LONG_LOCAL = "word " * 100


class _FakeOcr:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[bytes] = []

    def analyze(self, data: bytes) -> str:
        self.calls.append(data)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _parser(text: str, pages: int = 1):
    return lambda data: LocalParse(text=text, page_count=pages)


def _renderer(count: int = 1):
    def render(data, dpi, max_pages, transform):
        return [RenderedPage(page_number=i + 1, png=b"png") for i in range(count)]
    return render


@pytest.fixture(autouse=True)
def _fake_assembly(monkeypatch):
    monkeypatch.setattr(acquire, "assemble_pdf", lambda images: b"rebuilt")


def test_base_path_never_calls_ocr():
    ocr = _FakeOcr()
    result = acquire.run_extraction(b"pdf", ocr_port=ocr, pdf_parser=_parser(LONG_LOCAL))
    assert ocr.calls == []
    assert result.mode == ExtractionMode.BASE
    assert result.text == LONG_LOCAL.strip()
    assert result.comparison.enhanced_score is None


def test_tie_goes_to_enhanced_pass():
    ocr = _FakeOcr(GOOD_TEXT, GOOD_TEXT)
    result = acquire.run_extraction(
        b"pdf", ocr_port=ocr, force_enhanced=True, pdf_parser=_parser(""), page_renderer=_renderer(),
    )
    assert ocr.calls == [b"pdf", b"rebuilt"]
    assert result.mode == ExtractionMode.ENHANCED
    assert result.comparison.enhanced_score == result.comparison.base_score


def test_base_win_falls_back_to_embedded_text():
    ocr = _FakeOcr(GOOD_TEXT, "x")
    result = acquire.run_extraction(
        b"pdf", ocr_port=ocr, pdf_parser=_parser("short local text"), page_renderer=_renderer(),
    )
    assert result.mode == ExtractionMode.BASE
    assert result.text == "short local text"
    assert result.comparison.base_score == pytest.approx(0.8)
    assert result.comparison.enhanced_score == pytest.approx(0.6)


def test_base_win_without_embedded_text_uses_base_ocr():
    ocr = _FakeOcr(GOOD_TEXT, "x")
    result = acquire.run_extraction(b"pdf", ocr_port=ocr, pdf_parser=_parser(""), page_renderer=_renderer())
    assert result.mode == ExtractionMode.BASE
    assert result.text == GOOD_TEXT
    assert result.comparison.base_score == 1.0


def test_no_rendered_pages_skips_enhanced_pass():
    ocr = _FakeOcr(GOOD_TEXT)
    result = acquire.run_extraction(b"pdf", ocr_port=ocr, pdf_parser=_parser(""), page_renderer=_renderer(0))
    assert ocr.calls == [b"pdf"]
    assert result.mode == ExtractionMode.BASE
    assert result.comparison.enhanced_score is None


def test_render_failure_skips_enhanced_pass():
    def broken(data, dpi, max_pages, transform):
        raise RuntimeError("cannot open document")

    ocr = _FakeOcr(GOOD_TEXT)
    result = acquire.run_extraction(b"pdf", ocr_port=ocr, pdf_parser=_parser(""), page_renderer=broken)
    assert len(ocr.calls) == 1
    assert result.text == GOOD_TEXT


def test_preprocessor_failure_propagates():
    def render(data, dpi, max_pages, transform):
        return [RenderedPage(page_number=1, png=transform(b"png"))]

    def bad_preprocessor(png: bytes) -> bytes:
        raise ValueError("unsupported image mode")

    ocr = _FakeOcr(GOOD_TEXT, GOOD_TEXT)
    with pytest.raises(ValueError):
        acquire.run_extraction(
            b"pdf", ocr_port=ocr, pdf_parser=_parser(""), page_renderer=render, image_preprocessor=bad_preprocessor,
        )
    assert len(ocr.calls) == 1


def test_page_count_from_local_parse():
    ocr = _FakeOcr(GOOD_TEXT, GOOD_TEXT)
    result = acquire.run_extraction(b"pdf", ocr_port=ocr, pdf_parser=_parser("", pages=4), page_renderer=_renderer())
    assert result.page_count == 4


def test_missing_configuration_propagates():
    with pytest.raises(OcrConfigMissing):
        acquire.run_extraction(
            b"pdf", ocr_port=HttpOcrPort(None, None), force_enhanced=True, pdf_parser=_parser(LONG_LOCAL),
        )


def test_empty_ocr_propagates():
    ocr = _FakeOcr(OcrEmpty())
    with pytest.raises(OcrEmpty):
        acquire.run_extraction(b"pdf", ocr_port=ocr, pdf_parser=_parser(""), page_renderer=_renderer())
