from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"

    database_url: str = "sqlite:///./expense_tracker.db"
    redis_url: str = "redis://localhost:6379/0"

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "expense-receipts"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    ocr_provider: Literal["google_vision", "tesseract"] = "google_vision"
    google_application_credentials_json: str | None = None
    google_application_credentials: str | None = None
    tesseract_lang: str = "eng"

    ocr_default_template: Literal["general", "travel"] = "general"
    ocr_use_cache: bool = True
    ocr_preprocess_image: bool = True
    ocr_max_retries: int = 2
    ocr_retry_base_delay_s: float = 0.5
    ocr_max_image_dimension: int = 2000

    # Enqueue the Celery processor right after uploads instead of waiting for the client
    # to call /background-processor/process-next.
    auto_process_uploads: bool = False

    access_token_exp_minutes: int = 60 * 24

    init_user_email: str | None = None
    init_user_password: str | None = None


settings = Settings()
