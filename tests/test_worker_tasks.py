from __future__ import annotations

from sqlalchemy import select

from expense_tracker.core.config import settings
from expense_tracker.core.db import SessionLocal
from expense_tracker.modules.identity.models import User
from expense_tracker.modules.ocr import service as ocr_service
from expense_tracker.modules.ocr.providers import OcrProvider
from expense_tracker.modules.tasks.models import TaskStatus
from expense_tracker.modules.tasks.store import SqlTaskStore


class _NoTextProvider(OcrProvider):
    name = "stub"

    def _detect_text(self, image_bytes: bytes, mime_type: str) -> str:
        return ""


def test_process_next_task_runs_eagerly(monkeypatch, user):
    from expense_tracker.worker.tasks import process_next_task

    monkeypatch.setattr(ocr_service, "_provider", _NoTextProvider())
    with SessionLocal() as session:
        task = SqlTaskStore(session).create_task(
            user_id=user.id, type="expense_export", result={"format": "csv"}
        )
        task_id = task.id

    response = process_next_task.delay(str(user.id)).get()

    assert response["taskId"] == task_id
    assert response["result"]["rowCount"] == 0
    with SessionLocal() as session:
        assert SqlTaskStore(session).get_task(task_id).status == TaskStatus.COMPLETED


def test_bootstrap_creates_initial_user_once(monkeypatch):
    from expense_tracker.bootstrap import bootstrap

    monkeypatch.setattr(settings, "init_user_email", "admin@example.com")
    monkeypatch.setattr(settings, "init_user_password", "pw")

    bootstrap()
    bootstrap()

    with SessionLocal() as session:
        users = list(session.scalars(select(User).where(User.email == "admin@example.com")))
    assert len(users) == 1
