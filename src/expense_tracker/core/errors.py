from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class AppError(RuntimeError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(AppError):
    """Missing or unusable deployment configuration. Raised at construction time only."""


class ValidationError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class ProviderError(AppError):
    """OCR backend failure. Never escapes the provider adapter."""

    status_code = 502

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
