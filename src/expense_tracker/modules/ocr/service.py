"""
Receipt OCR orchestration.

``ReceiptOcrService`` sits between the task processor and an ``OcrProvider``: it serves
repeated receipts from the result cache, normalizes images and PDFs before they reach the
provider, retries transient provider failures and runs the text extraction heuristics.
"""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from expense_tracker.core.config import settings
from expense_tracker.core.errors import ValidationError
from expense_tracker.core.logging import get_logger, log_event, monotonic_ms
from expense_tracker.modules.ocr.extraction import extract_receipt_data
from expense_tracker.modules.ocr.models import OcrResultCache
from expense_tracker.modules.ocr.preprocess import (
    PDF_MIME_TYPE,
    largest_pdf_image,
    normalize_image,
    pdf_text_layer,
)
from expense_tracker.modules.ocr.providers import (
    NO_TEXT_DETECTED,
    OcrProvider,
    OcrResult,
    build_ocr_provider,
)

logger = get_logger(__name__)

CACHE_SCHEMA_VERSION = 1
TEMPLATES = frozenset({"general", "travel"})


@dataclass(frozen=True)
class OcrOptions:
    template: str = "general"
    use_cache: bool = True
    preprocess_image: bool = True
    max_retries: int = 2

    @classmethod
    def from_settings(cls, template: str | None = None) -> OcrOptions:
        template = template or settings.ocr_default_template
        if template not in TEMPLATES:
            raise ValidationError(f"Unsupported OCR template: {template}")
        return cls(
            template=template,
            use_cache=settings.ocr_use_cache,
            preprocess_image=settings.ocr_preprocess_image,
            max_retries=max(0, settings.ocr_max_retries),
        )


@dataclass(frozen=True)
class OcrOutcome:
    success: bool
    text: str | None = None
    extracted_data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    cached: bool = False


class SqlOcrCache:
    def __init__(self, session: Session) -> None:
        self._session = session

    def _find(self, content_hash: str, template: str) -> OcrResultCache | None:
        return self._session.scalar(
            select(OcrResultCache).where(
                OcrResultCache.content_hash == content_hash,
                OcrResultCache.template == template,
            )
        )

    def get(self, content_hash: str, template: str) -> dict[str, Any] | None:
        cached = self._find(content_hash, template)
        if not cached or cached.schema_version != CACHE_SCHEMA_VERSION:
            return None
        if not isinstance(cached.response_json, dict):
            return None
        return cached.response_json

    def put(
        self, content_hash: str, template: str, *, provider: str, response_json: dict[str, Any]
    ) -> None:
        cached = self._find(content_hash, template)
        if not cached:
            candidate = OcrResultCache(
                content_hash=content_hash,
                template=template,
                provider=provider,
                schema_version=CACHE_SCHEMA_VERSION,
                response_json=response_json,
            )
            try:
                with self._session.begin_nested():
                    self._session.add(candidate)
                self._session.commit()
                return
            except IntegrityError:
                cached = self._find(content_hash, template)
                if not cached:
                    return
        cached.provider = provider
        cached.schema_version = CACHE_SCHEMA_VERSION
        cached.response_json = response_json
        self._session.add(cached)
        self._session.commit()


class ReceiptOcrService:
    def __init__(
        self,
        provider: OcrProvider,
        *,
        cache: SqlOcrCache | None = None,
        retry_base_delay_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._retry_base_delay_s = (
            settings.ocr_retry_base_delay_s if retry_base_delay_s is None else retry_base_delay_s
        )
        self._sleep = sleep

    def process(self, body: bytes, mime_type: str, *, options: OcrOptions) -> OcrOutcome:
        start = time.monotonic()
        content_hash = hashlib.sha256(body).hexdigest()
        use_cache = options.use_cache and self._cache is not None

        if use_cache:
            cached = self._cache.get(content_hash, options.template)
            if cached is not None:
                log_event(
                    logger,
                    "ocr.cache.hit",
                    content_hash=content_hash,
                    template=options.template,
                )
                # Re-extract: an undated receipt defaults to the current day, not the caching day.
                text = cached.get("text") or ""
                return OcrOutcome(
                    success=True,
                    text=text,
                    extracted_data=extract_receipt_data(text).to_dict(),
                    cached=True,
                )

        result = self._recognize(body, mime_type, options=options)
        if not result.success:
            return OcrOutcome(success=False, error=result.error or "OCR processing failed")

        extracted = extract_receipt_data(result.text or "").to_dict()
        if use_cache:
            self._cache.put(
                content_hash,
                options.template,
                provider=self._provider.name,
                response_json={"text": result.text, "extractedData": extracted},
            )
        log_event(
            logger,
            "ocr.process.finish",
            content_hash=content_hash,
            template=options.template,
            provider=self._provider.name,
            vendor=extracted.get("vendor"),
            total=extracted.get("total"),
            duration_ms=monotonic_ms(start),
        )
        return OcrOutcome(success=True, text=result.text, extracted_data=extracted)

    def _recognize(self, body: bytes, mime_type: str, *, options: OcrOptions) -> OcrResult:
        if mime_type == PDF_MIME_TYPE:
            text = pdf_text_layer(body)
            if text:
                return OcrResult(success=True, text=text)
            image = largest_pdf_image(body)
            if image is None:
                return OcrResult(success=False, error=NO_TEXT_DETECTED)
            body, mime_type = image.body, image.mime_type
        elif options.preprocess_image and mime_type.startswith("image/"):
            prepared = normalize_image(body, max_dimension=settings.ocr_max_image_dimension)
            if prepared is not None:
                body, mime_type = prepared.body, prepared.mime_type

        attempts = options.max_retries + 1
        for attempt in range(1, attempts + 1):
            result = self._provider.recognize_text(body, mime_type)
            if result.success or not result.retryable or attempt == attempts:
                return result
            delay_s = min(3.0, self._retry_delay_s(attempt))
            log_event(
                logger,
                "ocr.provider.retry",
                provider=self._provider.name,
                attempt=attempt,
                delay_s=delay_s,
                error=result.error,
            )
            self._sleep(delay_s)
        raise AssertionError("unreachable")

    def _retry_delay_s(self, attempt: int) -> float:
        return self._retry_base_delay_s * (2 ** (attempt - 1))


_provider: OcrProvider | None = None


def get_ocr_provider() -> OcrProvider:
    global _provider  # noqa: PLW0603
    if _provider is None:
        _provider = build_ocr_provider()
    return _provider
