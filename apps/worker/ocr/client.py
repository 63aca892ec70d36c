"""
OCR ports. The pipeline only knows ``analyze(data) -> str``; concrete ports talk to a
document-intelligence REST service or to a local Tesseract install.
"""
from __future__ import annotations

import io
import logging
import os
import time
from typing import Callable, Optional, Protocol

import fitz  # PyMuPDF
import pytesseract
import requests
from PIL import Image

from packages.shared.errors import OcrConfigMissing, OcrEmpty, OcrServiceError

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "prebuilt-read"
DEFAULT_API_VERSION = "2023-07-31"


class OcrPort(Protocol):
    def analyze(self, data: bytes) -> str: ...


class HttpOcrPort:
    """Submit bytes, follow ``Operation-Location``, poll until the analysis settles."""

    def __init__(
        self,
        endpoint: str | None,
        key: str | None,
        model_id: str = DEFAULT_MODEL_ID,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30.0,
        poll_interval: float = 1.0,
        poll_max_attempts: int = 60,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = (endpoint or "").rstrip("/")
        self.key = key or ""
        self.model_id = model_id or DEFAULT_MODEL_ID
        self.api_version = api_version or DEFAULT_API_VERSION
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.poll_max_attempts = max(1, poll_max_attempts)
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.key)

    def _headers(self, content_type: str | None = None) -> dict[str, str]:
        headers = {"Ocp-Apim-Subscription-Key": self.key}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            send = self.session.post if method == "POST" else self.session.get
            return send(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error(f"OCR {method} request failed: {exc}")
            raise OcrServiceError(f"ocr-service-error: {method} request failed") from exc

    @staticmethod
    def _json(resp: requests.Response) -> dict:
        try:
            payload = resp.json()
        except ValueError as exc:
            logger.error(f"OCR response is not JSON: {exc}")
            raise OcrServiceError("ocr-service-error: response is not JSON") from exc
        if not isinstance(payload, dict):
            raise OcrServiceError("ocr-service-error: unexpected response body")
        return payload

    def analyze(self, data: bytes) -> str:
        if not self.configured:
            raise OcrConfigMissing()

        url = f"{self.endpoint}/formrecognizer/documentModels/{self.model_id}:analyze"
        resp = self._request(
            "POST",
            url,
            params={"api-version": self.api_version},
            headers=self._headers("application/octet-stream"),
            data=data,
        )
        if resp.status_code not in (200, 202):
            logger.error(f"OCR submit failed: HTTP {resp.status_code}")
            raise OcrServiceError(f"ocr-service-error: submit returned HTTP {resp.status_code}")

        operation_url = resp.headers.get("Operation-Location")
        if not operation_url:
            payload = self._json(resp) if resp.content else {}
            return self._content(payload)

        for _ in range(self.poll_max_attempts):
            poll = self._request("GET", operation_url, headers=self._headers())
            if poll.status_code != 200:
                logger.error(f"OCR poll failed: HTTP {poll.status_code}")
                raise OcrServiceError(f"ocr-service-error: poll returned HTTP {poll.status_code}")
            payload = self._json(poll)
            status = str(payload.get("status", "")).lower()
            if status == "succeeded":
                return self._content(payload)
            if status == "failed":
                logger.error(f"OCR analysis failed: {payload.get('error')}")
                raise OcrServiceError("ocr-service-error: analysis failed")
            self._sleep(self.poll_interval)

        logger.error(f"OCR analysis did not finish after {self.poll_max_attempts} polls")
        raise OcrServiceError("ocr-service-error: poll budget exhausted")

    @staticmethod
    def _content(payload: dict) -> str:
        content = (payload.get("analyzeResult") or {}).get("content") or ""
        if not content.strip():
            raise OcrEmpty()
        return content


class TesseractOcrPort:
    """Local fallback: PDFs are rasterized page by page, anything else is opened as an image."""

    def __init__(self, dpi: int = 300, lang: str = "eng", config: str = "--oem 1 --psm 6", timeout: int = 30):
        self.dpi = dpi
        self.lang = lang
        self.config = config
        self.timeout = timeout

    def _images(self, data: bytes) -> list[Image.Image]:
        if data[:5] == b"%PDF-":
            doc = fitz.open(stream=data, filetype="pdf")
            try:
                return [
                    Image.open(io.BytesIO(page.get_pixmap(dpi=self.dpi).tobytes("png")))
                    for page in doc
                ]
            finally:
                doc.close()
        return [Image.open(io.BytesIO(data))]

    def analyze(self, data: bytes) -> str:
        texts: list[str] = []
        try:
            for img in self._images(data):
                texts.append(
                    pytesseract.image_to_string(img, lang=self.lang, config=self.config, timeout=self.timeout).strip()
                )
        except pytesseract.TesseractNotFoundError as exc:
            logger.error(f"Tesseract not available: {exc}")
            raise OcrConfigMissing() from exc
        text = "\n".join(t for t in texts if t)
        if not text:
            raise OcrEmpty()
        return text


def build_ocr_port_from_env() -> OcrPort:
    """Resolve the host's OCR port once at startup. An unconfigured HTTP port fails on first use."""
    provider = os.getenv("OCR_PROVIDER", "http").strip().lower()
    if provider == "tesseract":
        return TesseractOcrPort(
            dpi=int(os.getenv("OCR_DPI", "300")),
            timeout=int(os.getenv("OCR_TIMEOUT_SECONDS", "30")),
        )
    return HttpOcrPort(
        endpoint=os.getenv("OCR_ENDPOINT"),
        key=os.getenv("OCR_KEY"),
        model_id=os.getenv("OCR_MODEL_ID", DEFAULT_MODEL_ID),
        api_version=os.getenv("OCR_API_VERSION", DEFAULT_API_VERSION),
        timeout=float(os.getenv("OCR_TIMEOUT_SECONDS", "30")),
        poll_interval=float(os.getenv("OCR_POLL_INTERVAL_SECONDS", "1")),
        poll_max_attempts=int(os.getenv("OCR_POLL_MAX_ATTEMPTS", "60")),
    )
