from __future__ import annotations

import io

from PIL import Image, ImageDraw

from apps.worker.ocr.preprocess import _row_variance_score, deskew, preprocess_image


def _striped(size: int = 200) -> Image.Image:
    img = Image.new("L", (size, size), 255)
    draw = ImageDraw.Draw(img)
    for y in range(5, size - 5, 10):
        draw.rectangle([0, y, size - 1, y + 2], fill=0)
    return img


def _png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def test_row_variance_prefers_separated_rows():
    flat = Image.new("L", (200, 200), 128)
    assert _row_variance_score(_striped()) > _row_variance_score(flat)


def test_deskew_keeps_upright_page():
    img = _striped()
    assert deskew(img).tobytes() == img.tobytes()


def test_deskew_tie_keeps_unrotated():
    blank = Image.new("L", (120, 80), 255)
    result = deskew(blank)
    assert result.size == blank.size
    assert result.tobytes() == blank.tobytes()


def test_preprocess_outputs_binary_png_same_size():
    src = _striped(160).convert("RGB")
    out = preprocess_image(_png(src))
    assert out[:8] == b"\x89PNG\r\n\x1a\n"
    with Image.open(io.BytesIO(out)) as img:
        assert img.mode == "L"
        assert img.size == src.size
        assert set(img.getdata()) <= {0, 255}


def test_preprocess_is_deterministic():
    png = _png(_striped(120))
    assert preprocess_image(png) == preprocess_image(png)
