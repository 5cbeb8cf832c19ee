from __future__ import annotations

import csv
import io
from datetime import timedelta

from openpyxl import load_workbook

from expense_tracker.core.db import SessionLocal
from expense_tracker.core.errors import ProviderError
from expense_tracker.core.models import utcnow
from expense_tracker.core.storage import get_storage
from expense_tracker.modules.expenses.models import ExpenseStatus
from expense_tracker.modules.expenses.service import (
    ReceiptUpload,
    SqlExpenseStore,
    batch_upload_receipts,
    create_expense,
    queue_receipt_ocr,
)
from expense_tracker.modules.identity.service import create_user
from expense_tracker.modules.ocr.providers import OcrProvider
from expense_tracker.modules.tasks.models import BackgroundTask, TaskStatus
from expense_tracker.modules.tasks.processor import OutcomeKind, build_task_processor
from expense_tracker.modules.tasks.store import SqlTaskStore

RECEIPT_TEXT = "Blue Bottle\n2 x Latte $9.00\n05/03/2024\nTax: 0.72\nTotal: $9.72\n"


class _StubProvider(OcrProvider):
    name = "stub"

    def __init__(self, text: str = RECEIPT_TEXT, error: str | None = None) -> None:
        self.text = text
        self.error = error
        self.calls = 0

    def _detect_text(self, image_bytes: bytes, mime_type: str) -> str:
        self.calls += 1
        if self.error:
            raise ProviderError(self.error)
        return self.text


def _queue_receipt(session, user, *, body: bytes = b"not-really-a-jpeg"):
    expense = create_expense(session, user=user, trip_name="Lisbon")
    upload = ReceiptUpload(filename="receipt.jpg", content_type="image/jpeg", body=body)
    return queue_receipt_ocr(session, expense=expense, user=user, upload=upload, template="general")


def test_no_pending_tasks_is_idle(user):
    with SessionLocal() as session:
        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

    assert outcome.kind == OutcomeKind.IDLE
    assert outcome.to_response() == {"message": "No pending tasks found"}


def test_receipt_ocr_success_updates_expense_and_task(user):
    provider = _StubProvider()
    with SessionLocal() as session:
        expense, task = _queue_receipt(session, user)
        expense_id, task_id = expense.id, task.id

        outcome = build_task_processor(session, provider=provider).process_next(user.id)

        assert outcome.kind == OutcomeKind.COMPLETED
        response = outcome.to_response()
        assert response["message"] == "Task processed successfully"
        assert response["taskId"] == task_id
        assert response["expenseId"] == expense_id
        assert response["extractedData"]["total"] == "9.72"

        expense = SqlExpenseStore(session).get_expense(expense_id)
        assert expense.vendor == "Blue Bottle"
        assert expense.cost == "9.72"
        assert expense.date == "2024-05-03"
        assert expense.comments == "Receipt: Blue Bottle"
        assert expense.trip_name == "Lisbon"
        assert expense.status == ExpenseStatus.COMPLETE

        task = SqlTaskStore(session).get_task(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.error is None
        assert task.result["message"] == "OCR processing completed successfully"
        assert task.result["extractedData"]["vendor"] == "Blue Bottle"
    assert provider.calls == 1


def test_no_text_detected_marks_expense_ocr_failed(user):
    with SessionLocal() as session:
        expense, task = _queue_receipt(session, user)
        expense_id, task_id = expense.id, task.id

        outcome = build_task_processor(session, provider=_StubProvider(text="  \n")).process_next(
            user.id
        )

        assert outcome.kind == OutcomeKind.OCR_FAILED
        assert outcome.to_response() == {
            "message": "OCR processing failed",
            "taskId": task_id,
            "expenseId": expense_id,
            "error": "No text detected in the image",
        }
        assert SqlExpenseStore(session).get_expense(expense_id).status == ExpenseStatus.OCR_FAILED
        task = SqlTaskStore(session).get_task(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.error == "No text detected in the image"
        assert task.result is None


def test_provider_failure_is_recorded(user):
    with SessionLocal() as session:
        _, task = _queue_receipt(session, user)
        task_id = task.id

        outcome = build_task_processor(
            session, provider=_StubProvider(error="PERMISSION_DENIED: billing disabled")
        ).process_next(user.id)

        assert outcome.kind == OutcomeKind.OCR_FAILED
        task = SqlTaskStore(session).get_task(task_id)
        assert task.error == "PERMISSION_DENIED: billing disabled"


def test_unknown_task_type_fails_task_without_raising(user):
    with SessionLocal() as session:
        expense = create_expense(session, user=user, vendor="Hotel Lux", cost="120.00")
        expense_id = expense.id
        before = (expense.vendor, expense.cost, expense.status, expense.updated_at)
        task = BackgroundTask(
            user_id=user.id, type="unknown_type", status=TaskStatus.PENDING, result={}
        )
        session.add(task)
        session.commit()
        task_id = task.id

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

        assert outcome.kind == OutcomeKind.UNKNOWN_TYPE
        assert outcome.status_code == 200
        assert outcome.to_response() == {
            "message": "Unknown task type",
            "taskId": task_id,
            "type": "unknown_type",
        }
        task = SqlTaskStore(session).get_task(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.error == "Unknown task type: unknown_type"

        session.expire_all()
        expense = SqlExpenseStore(session).get_expense(expense_id)
        assert (expense.vendor, expense.cost, expense.status, expense.updated_at) == before


def test_missing_parameters_fail_the_task(user):
    with SessionLocal() as session:
        task = SqlTaskStore(session).create_task(
            user_id=user.id, type="receipt_ocr", result={"expenseId": 1}
        )
        task_id = task.id

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.status_code == 500
        assert outcome.to_response() == {
            "message": "Task processing failed",
            "taskId": task_id,
            "error": "Missing required task details: expenseId or receiptPath",
        }
        assert SqlTaskStore(session).get_task(task_id).status == TaskStatus.FAILED


def test_missing_receipt_file_fails_the_task(user):
    with SessionLocal() as session:
        expense = create_expense(session, user=user)
        task = SqlTaskStore(session).create_task(
            user_id=user.id,
            type="receipt_ocr",
            result={"expenseId": expense.id, "receiptPath": "receipts/missing.jpg"},
        )
        task_id, expense_id = task.id, expense.id

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.error == "Receipt file receipts/missing.jpg not found or empty"
        assert SqlTaskStore(session).get_task(task_id).status == TaskStatus.FAILED
        assert SqlExpenseStore(session).get_expense(expense_id).status == ExpenseStatus.COMPLETE


def test_missing_expense_fails_the_task(user):
    get_storage().put(key="receipts/orphan.jpg", body=b"bytes")
    with SessionLocal() as session:
        SqlTaskStore(session).create_task(
            user_id=user.id,
            type="receipt_ocr",
            result={"expenseId": 404, "receiptPath": "receipts/orphan.jpg"},
        )

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

    assert outcome.kind == OutcomeKind.ERROR
    assert outcome.error == "Expense 404 not found"


def test_receipt_task_cannot_touch_another_users_expense(user):
    get_storage().put(key="receipts/foreign.jpg", body=b"bytes")
    provider = _StubProvider()
    with SessionLocal() as session:
        other = create_user(session, email="colleague@example.com", password="pw")
        expense = create_expense(session, user=other, vendor="Hotel Lux", cost="120.00")
        expense_id = expense.id
        task = SqlTaskStore(session).create_task(
            user_id=user.id,
            type="receipt_ocr",
            result={"expenseId": expense_id, "receiptPath": "receipts/foreign.jpg"},
        )
        task_id = task.id

        outcome = build_task_processor(session, provider=provider).process_next(user.id)

        assert outcome.kind == OutcomeKind.ERROR
        assert outcome.error == f"Expense {expense_id} not found"
        assert SqlTaskStore(session).get_task(task_id).status == TaskStatus.FAILED

        session.expire_all()
        expense = SqlExpenseStore(session).get_expense(expense_id)
        assert expense.vendor == "Hotel Lux"
        assert expense.cost == "120.00"
        assert expense.status == ExpenseStatus.COMPLETE
    assert provider.calls == 0


def test_oldest_pending_task_is_processed_first(user):
    with SessionLocal() as session:
        newer = BackgroundTask(user_id=user.id, type="legacy_newer", status=TaskStatus.PENDING)
        older = BackgroundTask(
            user_id=user.id,
            type="legacy_older",
            status=TaskStatus.PENDING,
            created_at=utcnow() - timedelta(hours=1),
        )
        session.add(newer)
        session.commit()
        session.add(older)
        session.commit()

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

    assert outcome.task_type == "legacy_older"


def test_lost_claim_moves_on_to_next_task(user):
    class _RacingTaskStore(SqlTaskStore):
        def __init__(self, session, *, lose: set[int]) -> None:
            super().__init__(session)
            self._lose = lose

        def claim_task(self, task_id: int) -> bool:
            if task_id in self._lose:
                # Another worker claims it between listing and claiming.
                super().claim_task(task_id)
            return super().claim_task(task_id)

    with SessionLocal() as session:
        store = SqlTaskStore(session)
        first = store.create_task(user_id=user.id, type="receipt_ocr")
        first.created_at = utcnow() - timedelta(minutes=1)
        session.add(first)
        session.commit()
        second = BackgroundTask(user_id=user.id, type="legacy", status=TaskStatus.PENDING)
        session.add(second)
        session.commit()
        first_id, second_id = first.id, second.id

        processor = build_task_processor(session, provider=_StubProvider())
        processor._tasks = _RacingTaskStore(session, lose={first_id})
        outcome = processor.process_next(user.id)

        assert outcome.task_id == second_id
        assert store.get_task(first_id).status == TaskStatus.PROCESSING


def test_batch_upload_fans_out_receipt_tasks(user):
    provider = _StubProvider()
    with SessionLocal() as session:
        uploads = [
            ReceiptUpload(filename=f"r{i}.jpg", content_type="image/jpeg", body=f"r{i}".encode())
            for i in range(2)
        ]
        expenses, batch = batch_upload_receipts(
            session, user=user, uploads=uploads, trip_name="Oslo", template="travel"
        )
        expense_ids = [e.id for e in expenses]
        assert all(e.status == ExpenseStatus.PROCESSING for e in expenses)
        assert all(e.vendor == "Unknown Vendor" for e in expenses)

        processor = build_task_processor(session, provider=provider)
        outcome = processor.process_next(user.id)

        assert outcome.kind == OutcomeKind.COMPLETED
        assert outcome.task_id == batch.id
        child_ids = outcome.result["taskIds"]
        assert len(child_ids) == 2

        store = SqlTaskStore(session)
        for child_id, expense_id in zip(child_ids, expense_ids):
            child = store.get_task(child_id)
            assert child.status == TaskStatus.PENDING
            assert child.result["expenseId"] == expense_id
            assert child.result["template"] == "travel"

        assert processor.process_next(user.id).kind == OutcomeKind.COMPLETED
        assert processor.process_next(user.id).kind == OutcomeKind.COMPLETED
        assert processor.process_next(user.id).kind == OutcomeKind.IDLE

        expenses_store = SqlExpenseStore(session)
        for expense_id in expense_ids:
            assert expenses_store.get_expense(expense_id).status == ExpenseStatus.COMPLETE
    assert provider.calls == 2


def test_empty_batch_fails(user):
    with SessionLocal() as session:
        SqlTaskStore(session).create_task(user_id=user.id, type="batch_upload", result={"items": []})

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

    assert outcome.kind == OutcomeKind.ERROR
    assert outcome.error == "Batch upload has no items"


def test_expense_export_csv_respects_filters(user):
    with SessionLocal() as session:
        create_expense(session, user=user, trip_name="Lisbon", vendor="Tram", cost="3.00")
        create_expense(session, user=user, trip_name="Porto", vendor="Ferry", cost="9.00")
        task = SqlTaskStore(session).create_task(
            user_id=user.id,
            type="expense_export",
            result={"format": "csv", "filters": {"tripName": "Lisbon"}},
        )
        task_id = task.id

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

    assert outcome.kind == OutcomeKind.COMPLETED
    assert outcome.result["rowCount"] == 1
    assert outcome.result["fileKey"] == f"exports/{user.id}/{task_id}.csv"

    body = get_storage().get(key=outcome.result["fileKey"]).decode("utf-8")
    rows = list(csv.reader(io.StringIO(body)))
    assert rows[0][:3] == ["Date", "Trip", "Vendor"]
    assert [r[2] for r in rows[1:]] == ["Tram"]


def test_expense_export_xlsx(user):
    with SessionLocal() as session:
        create_expense(session, user=user, vendor="Hotel Rio", cost="120.50", date="2024-06-01")
        SqlTaskStore(session).create_task(
            user_id=user.id, type="expense_export", result={"format": "xlsx"}
        )

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

    wb = load_workbook(io.BytesIO(get_storage().get(key=outcome.result["fileKey"])))
    ws = wb.active
    assert ws["A1"].value == "Date"
    assert ws["C2"].value == "Hotel Rio"
    assert ws["F2"].value == 120.5


def test_unsupported_export_format_fails(user):
    with SessionLocal() as session:
        SqlTaskStore(session).create_task(
            user_id=user.id, type="expense_export", result={"format": "pdf"}
        )

        outcome = build_task_processor(session, provider=_StubProvider()).process_next(user.id)

    assert outcome.kind == OutcomeKind.ERROR
    assert outcome.error == "Unsupported export format: pdf"
