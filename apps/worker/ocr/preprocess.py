"""
Page image cleanup ahead of the enhanced OCR pass: deskew, denoise, binarize.
"""
from __future__ import annotations

import io

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

# Unrotated first so it wins ties.
CANDIDATE_ANGLES = (0, -1, 1, -2, 2)
SCORE_MAX_SIDE = 400
BINARIZE_THRESHOLD = 180

_LINEAR_LUT = [max(0, min(255, round(1.1 * v - 10))) for v in range(256)]


def _row_variance_score(img: Image.Image) -> float:
    """Mean squared distance of each row's average grey level from mid-grey."""
    small = img.convert("L")
    small.thumbnail((SCORE_MAX_SIDE, SCORE_MAX_SIDE))
    width, height = small.size
    data = small.tobytes()
    variance = 0.0
    for y in range(height):
        row = data[y * width:(y + 1) * width]
        avg = sum(row) / width
        variance += (avg - 128) ** 2
    return variance / height


def _rotate(img: Image.Image, angle: int) -> Image.Image:
    if angle == 0:
        return img.copy()
    src = img.convert("RGB")
    return src.rotate(angle, resample=Image.Resampling.BICUBIC, expand=False, fillcolor=(255, 255, 255))


def deskew(img: Image.Image) -> Image.Image:
    """Try small rotations and keep the one whose text rows are most sharply separated."""
    best = img
    best_score = float("-inf")
    for angle in CANDIDATE_ANGLES:
        rotated = _rotate(img, angle)
        score = _row_variance_score(rotated)
        if score > best_score:
            best_score = score
            best = rotated
    return best


def preprocess_image(png: bytes) -> bytes:
    """Deskew, then greyscale, median denoise, sharpen, brighten, stretch contrast, normalize and threshold."""
    with Image.open(io.BytesIO(png)) as src:
        src.load()
        img = deskew(src)

    img = img.convert("L")
    img = img.filter(ImageFilter.MedianFilter(3))
    img = img.filter(ImageFilter.UnsharpMask(radius=1, percent=150, threshold=0))
    img = ImageEnhance.Brightness(img).enhance(1.05)
    img = img.point(_LINEAR_LUT)
    img = ImageOps.autocontrast(img)
    img = img.point(lambda v: 255 if v >= BINARIZE_THRESHOLD else 0)

    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()
