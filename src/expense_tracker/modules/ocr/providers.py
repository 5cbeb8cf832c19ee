from __future__ import annotations

import json
import time
from dataclasses import dataclass
from io import BytesIO

import pytesseract
from google.api_core import exceptions as google_exceptions
from google.cloud import vision
from google.oauth2 import service_account
from PIL import Image, UnidentifiedImageError

from expense_tracker.core.config import settings
from expense_tracker.core.errors import ConfigurationError, ProviderError
from expense_tracker.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)

NO_TEXT_DETECTED = "No text detected in the image"

_RETRYABLE_GOOGLE_ERRORS: tuple[type[Exception], ...] = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.TooManyRequests,
    google_exceptions.ResourceExhausted,
    google_exceptions.InternalServerError,
)


@dataclass(frozen=True)
class OcrResult:
    success: bool
    text: str | None = None
    error: str | None = None
    retryable: bool = False


class OcrProvider:
    name = "base"

    def _detect_text(self, image_bytes: bytes, mime_type: str) -> str:  # pragma: no cover
        raise NotImplementedError

    def recognize_text(self, image_bytes: bytes, mime_type: str) -> OcrResult:
        start = time.monotonic()
        try:
            text = self._detect_text(image_bytes, mime_type)
        except ProviderError as e:
            log_event(
                logger,
                "ocr.provider.failure",
                provider=self.name,
                mime_type=mime_type,
                error=e.message,
                retryable=e.retryable,
                duration_ms=monotonic_ms(start),
            )
            return OcrResult(success=False, error=e.message, retryable=e.retryable)
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "ocr.provider.failure",
                provider=self.name,
                mime_type=mime_type,
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            return OcrResult(success=False, error=str(e) or type(e).__name__)

        if not text.strip():
            log_event(
                logger,
                "ocr.provider.no_text",
                provider=self.name,
                mime_type=mime_type,
                duration_ms=monotonic_ms(start),
            )
            return OcrResult(success=False, error=NO_TEXT_DETECTED)

        log_event(
            logger,
            "ocr.provider.success",
            provider=self.name,
            mime_type=mime_type,
            byte_size=len(image_bytes),
            text_length=len(text),
            duration_ms=monotonic_ms(start),
        )
        return OcrResult(success=True, text=text)


def _build_vision_client() -> vision.ImageAnnotatorClient:
    if settings.google_application_credentials_json:
        try:
            info = json.loads(settings.google_application_credentials_json)
        except json.JSONDecodeError as e:
            raise ConfigurationError("GOOGLE_APPLICATION_CREDENTIALS_JSON is not valid JSON") from e
        credentials = service_account.Credentials.from_service_account_info(info)
        return vision.ImageAnnotatorClient(credentials=credentials)
    if settings.google_application_credentials:
        return vision.ImageAnnotatorClient.from_service_account_file(
            settings.google_application_credentials
        )
    raise ConfigurationError("Google Cloud Vision API credentials not configured")


class GoogleVisionProvider(OcrProvider):
    name = "google_vision"

    def __init__(self, client: vision.ImageAnnotatorClient | None = None) -> None:
        self._client = client or _build_vision_client()

    def _detect_text(self, image_bytes: bytes, mime_type: str) -> str:
        try:
            response = self._client.text_detection(image=vision.Image(content=image_bytes))
        except _RETRYABLE_GOOGLE_ERRORS as e:
            raise ProviderError(e.message or str(e), retryable=True) from e
        except google_exceptions.GoogleAPIError as e:
            raise ProviderError(str(e)) from e

        if response.error and response.error.message:
            raise ProviderError(response.error.message)
        annotations = response.text_annotations
        if not annotations:
            return ""
        # The first annotation spans the whole image; the rest are individual words.
        return annotations[0].description or ""


class TesseractProvider(OcrProvider):
    name = "tesseract"

    def __init__(self, lang: str | None = None) -> None:
        self._lang = lang or settings.tesseract_lang

    def _detect_text(self, image_bytes: bytes, mime_type: str) -> str:
        try:
            image = Image.open(BytesIO(image_bytes))
        except UnidentifiedImageError as e:
            raise ProviderError(f"Unsupported image format: {mime_type}") from e
        if image.mode not in {"RGB", "L"}:
            image = image.convert("RGB")
        try:
            return pytesseract.image_to_string(image, lang=self._lang) or ""
        except pytesseract.TesseractNotFoundError as e:
            raise ProviderError("Tesseract is not installed") from e
        except pytesseract.TesseractError as e:
            raise ProviderError(str(e)) from e


def build_ocr_provider() -> OcrProvider:
    if settings.ocr_provider == "tesseract":
        return TesseractProvider()
    return GoogleVisionProvider()
