from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any expense_tracker imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.expense_tracker_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("OCR_RETRY_BASE_DELAY_S", "0")


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import expense_tracker.models  # noqa: F401
    import expense_tracker.core.storage as storage_mod
    import expense_tracker.modules.ocr.service as ocr_service_mod
    from expense_tracker.core.db import engine
    from expense_tracker.core.models import Base

    storage_mod._storage = None
    ocr_service_mod._provider = None

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture
def user():
    from expense_tracker.core.db import SessionLocal
    from expense_tracker.modules.identity.service import create_user

    with SessionLocal() as session:
        created = create_user(session, email="traveler@example.com", password="pw")
        session.expunge(created)
    return created
