from __future__ import annotations

import mimetypes
import os
import time
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from expense_tracker.core.config import settings
from expense_tracker.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int


@dataclass(frozen=True)
class StoredFile:
    data: bytes
    content_type: str | None = None


def guess_content_type(key: str) -> str | None:
    content_type, _ = mimetypes.guess_type(key)
    return content_type


class ObjectStorage:
    def put(
        self, *, key: str, body: bytes, content_type: str | None = None
    ) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def delete(self, *, key: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def download(self, key: str) -> StoredFile:
        return StoredFile(data=self.get(key=key), content_type=guess_content_type(key))


class LocalObjectStorage(ObjectStorage):
    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        path = self._root / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except Exception:
            log_exception(
                logger,
                "storage.put.failure",
                backend="local",
                storage_key=key,
                byte_size=len(body),
            )
            raise
        log_event(
            logger,
            "storage.put.success",
            backend="local",
            storage_key=key,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body))

    def get(self, *, key: str) -> bytes:
        start = time.monotonic()
        path = self._root / key
        if not path.exists():
            log_event(
                logger,
                "storage.get.failure",
                backend="local",
                storage_key=key,
                duration_ms=monotonic_ms(start),
            )
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def delete(self, *, key: str) -> None:
        path = self._root / key
        if not path.exists():
            return
        try:
            path.unlink()
        except Exception:
            log_exception(logger, "storage.delete.failure", backend="local", storage_key=key)
            raise


class S3ObjectStorage(ObjectStorage):
    def __init__(self) -> None:
        region = settings.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"

        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=region,
        )
        config = Config(
            retries={"max_attempts": 3, "mode": "adaptive"},
            connect_timeout=30,
            read_timeout=60,
        )
        self._client = session.client(
            "s3", endpoint_url=settings.s3_endpoint_url or None, config=config
        )
        self._bucket = settings.s3_bucket

    def _retry_delay_s(self, attempt: int) -> float:
        # attempt=1 => 0.25s, attempt=2 => 0.5s, attempt=3 => 1.0s, ...
        return min(3.0, 0.25 * (2 ** (attempt - 1)))

    def _should_retry_error(self, error: Exception) -> bool:
        if isinstance(error, ClientError):
            code = (error.response.get("Error") or {}).get("Code")
            return code in {
                "RequestTimeout",
                "Throttling",
                "SlowDown",
                "InternalError",
                "ServiceUnavailable",
            }
        return isinstance(error, BotoCoreError)

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        extra = {"ContentType": content_type} if content_type else {}
        max_attempts = 5
        for attempt in range(1, max_attempts + 1):
            try:
                self._client.put_object(Bucket=self._bucket, Key=key, Body=body, **extra)
                break
            except Exception as e:  # noqa: BLE001
                if attempt < max_attempts and self._should_retry_error(e):
                    delay_s = self._retry_delay_s(attempt)
                    log_event(
                        logger,
                        "storage.put.retry",
                        backend="s3",
                        storage_key=key,
                        attempt=attempt,
                        delay_s=delay_s,
                        error_type=type(e).__name__,
                    )
                    time.sleep(delay_s)
                    continue
                log_exception(
                    logger,
                    "storage.put.failure",
                    backend="s3",
                    storage_key=key,
                    byte_size=len(body),
                    attempt=attempt,
                )
                raise
        log_event(
            logger,
            "storage.put.success",
            backend="s3",
            storage_key=key,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body))

    def _get_object(self, key: str) -> dict:
        start = time.monotonic()
        try:
            return self._client.get_object(Bucket=self._bucket, Key=key)
        except Exception as e:  # noqa: BLE001
            log_exception(
                logger,
                "storage.get.failure",
                backend="s3",
                storage_key=key,
                duration_ms=monotonic_ms(start),
            )
            raise StorageError(f"Object not found: {key}") from e

    def get(self, *, key: str) -> bytes:
        return self._get_object(key)["Body"].read()

    def download(self, key: str) -> StoredFile:
        resp = self._get_object(key)
        return StoredFile(
            data=resp["Body"].read(),
            content_type=resp.get("ContentType") or guess_content_type(key),
        )

    def delete(self, *, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except Exception:
            log_exception(logger, "storage.delete.failure", backend="s3", storage_key=key)
            raise


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage  # noqa: PLW0603
    if _storage is not None:
        return _storage

    if settings.storage_backend == "s3":
        _storage = S3ObjectStorage()
    else:
        root = settings.local_storage_path
        if not root.is_absolute():
            root = Path(os.getcwd()) / root
        _storage = LocalObjectStorage(root)
    return _storage
