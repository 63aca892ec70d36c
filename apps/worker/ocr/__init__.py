from .client import HttpOcrPort, OcrPort, TesseractOcrPort, build_ocr_port_from_env
from .preprocess import deskew, preprocess_image
from .renderer import assemble_pdf, render_pages
from .strategy import select_strategy
