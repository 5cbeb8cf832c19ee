from __future__ import annotations

from datetime import timedelta

import pytest

from expense_tracker.core.db import SessionLocal
from expense_tracker.core.errors import NotFoundError, ValidationError
from expense_tracker.core.models import utcnow
from expense_tracker.modules.tasks.models import BackgroundTask, TaskStatus
from expense_tracker.modules.tasks.store import SqlTaskStore, load_task_params


def test_create_task_validates_type_and_status(user):
    with SessionLocal() as session:
        store = SqlTaskStore(session)
        with pytest.raises(ValidationError, match="Invalid task type: thumbnail"):
            store.create_task(user_id=user.id, type="thumbnail")
        with pytest.raises(ValidationError, match="Invalid task status: queued"):
            store.create_task(user_id=user.id, type="receipt_ocr", status="queued")

        task = store.create_task(user_id=user.id, type="receipt_ocr", result={"expenseId": 1})
        assert task.id is not None
        assert task.status == TaskStatus.PENDING
        assert task.result == {"expenseId": 1}
        assert task.error is None


def test_tasks_are_listed_newest_first(user):
    with SessionLocal() as session:
        store = SqlTaskStore(session)
        first = store.create_task(user_id=user.id, type="receipt_ocr")
        second = store.create_task(user_id=user.id, type="expense_export")
        first.created_at = utcnow() - timedelta(minutes=5)
        session.add(first)
        session.commit()

        assert [t.id for t in store.get_tasks_by_user_id(user.id)] == [second.id, first.id]


def test_update_unknown_task_raises_not_found():
    with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            SqlTaskStore(session).update_task_status(999, TaskStatus.COMPLETED)


def test_update_without_result_keeps_payload(user):
    with SessionLocal() as session:
        store = SqlTaskStore(session)
        task = store.create_task(user_id=user.id, type="receipt_ocr", result={"expenseId": 7})

        updated = store.update_task_status(task.id, TaskStatus.PROCESSING)

        assert updated.status == TaskStatus.PROCESSING
        assert updated.result == {"expenseId": 7}


def test_failed_status_records_error_and_clears_result(user):
    with SessionLocal() as session:
        store = SqlTaskStore(session)
        task = store.create_task(user_id=user.id, type="receipt_ocr", result={"expenseId": 7})

        failed = store.update_task_status(task.id, "failed", result=None, error="boom")

        assert failed.status == TaskStatus.FAILED
        assert failed.error == "boom"
        assert failed.result is None


def test_terminal_tasks_are_not_changed(user):
    with SessionLocal() as session:
        store = SqlTaskStore(session)
        task = store.create_task(user_id=user.id, type="receipt_ocr")
        store.update_task_status(task.id, TaskStatus.COMPLETED, result={"message": "done"})

        again = store.update_task_status(task.id, TaskStatus.FAILED, error="late failure")

        assert again.status == TaskStatus.COMPLETED
        assert again.result == {"message": "done"}
        assert again.error is None


def test_claim_task_succeeds_once(user):
    with SessionLocal() as session:
        store = SqlTaskStore(session)
        task = store.create_task(user_id=user.id, type="receipt_ocr")

        assert store.claim_task(task.id) is True
        assert store.claim_task(task.id) is False
        assert store.get_task(task.id).status == TaskStatus.PROCESSING


def test_unknown_types_already_stored_still_load(user):
    with SessionLocal() as session:
        session.add(BackgroundTask(user_id=user.id, type="thumbnail", status=TaskStatus.PENDING))
        session.commit()

        [task] = SqlTaskStore(session).get_tasks_by_user_id(user.id)
        assert task.type == "thumbnail"


def test_load_task_params_accepts_legacy_json_strings():
    assert load_task_params('{"expenseId": 3, "receiptPath": "a.jpg"}') == {
        "expenseId": 3,
        "receiptPath": "a.jpg",
    }
    assert load_task_params(None) == {}
    assert load_task_params({"expenseId": 3}) == {"expenseId": 3}
    with pytest.raises(ValidationError):
        load_task_params("[1, 2]")
