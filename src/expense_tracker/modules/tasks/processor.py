"""
Background task processor.

Each ``process_next`` call drains exactly one task for a user: it claims the oldest pending
task (``pending -> processing`` via ``TaskStore.claim_task``), dispatches on its type and
always leaves it in a terminal state. Failures inside a handler are recorded on the task
instead of propagating to the caller.
"""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy.orm import Session

from expense_tracker.core.errors import NotFoundError, ValidationError
from expense_tracker.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_background_task_context,
    set_background_task_context,
)
from expense_tracker.core.storage import (
    StorageError,
    StoredFile,
    StoredObject,
    get_storage,
    guess_content_type,
)
from expense_tracker.modules.expenses.models import ExpenseStatus
from expense_tracker.modules.expenses.reconciliation import build_expense_patch
from expense_tracker.modules.expenses.service import (
    ExpenseFilters,
    ExpenseStore,
    SqlExpenseStore,
)
from expense_tracker.modules.exports.service import (
    EXPORT_CONTENT_TYPES,
    export_key,
    parse_export_format,
    render_expenses,
)
from expense_tracker.modules.ocr.providers import OcrProvider
from expense_tracker.modules.ocr.service import (
    OcrOptions,
    ReceiptOcrService,
    SqlOcrCache,
    get_ocr_provider,
)
from expense_tracker.modules.tasks.models import BackgroundTask, TaskStatus, TaskType
from expense_tracker.modules.tasks.store import SqlTaskStore, TaskStore, load_task_params

logger = get_logger(__name__)

OCR_COMPLETED_MESSAGE = "OCR processing completed successfully"


class FileStore(Protocol):
    def download(self, key: str) -> StoredFile: ...

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject: ...


class OutcomeKind(str, enum.Enum):
    IDLE = "idle"
    COMPLETED = "completed"
    OCR_FAILED = "ocr_failed"
    UNKNOWN_TYPE = "unknown_type"
    ERROR = "error"


@dataclass(frozen=True)
class ProcessOutcome:
    kind: OutcomeKind
    task_id: int | None = None
    task_type: str | None = None
    expense_id: int | None = None
    extracted_data: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

    @property
    def status_code(self) -> int:
        return 500 if self.kind == OutcomeKind.ERROR else 200

    def to_response(self) -> dict[str, Any]:
        if self.kind == OutcomeKind.IDLE:
            return {"message": "No pending tasks found"}
        if self.kind == OutcomeKind.UNKNOWN_TYPE:
            return {"message": "Unknown task type", "taskId": self.task_id, "type": self.task_type}
        if self.kind == OutcomeKind.OCR_FAILED:
            return {
                "message": "OCR processing failed",
                "taskId": self.task_id,
                "expenseId": self.expense_id,
                "error": self.error,
            }
        if self.kind == OutcomeKind.ERROR:
            return {
                "message": "Task processing failed",
                "taskId": self.task_id,
                "error": self.error,
            }
        if self.task_type == TaskType.RECEIPT_OCR:
            return {
                "message": "Task processed successfully",
                "taskId": self.task_id,
                "expenseId": self.expense_id,
                "extractedData": self.extracted_data,
            }
        return {
            "message": "Task processed successfully",
            "taskId": self.task_id,
            "type": self.task_type,
            "result": self.result,
        }


class TaskProcessor:
    def __init__(
        self,
        *,
        tasks: TaskStore,
        expenses: ExpenseStore,
        files: FileStore,
        ocr: ReceiptOcrService,
    ) -> None:
        self._tasks = tasks
        self._expenses = expenses
        self._files = files
        self._ocr = ocr

    def process_next(self, user_id: uuid.UUID) -> ProcessOutcome:
        pending = [
            t for t in self._tasks.get_tasks_by_user_id(user_id) if t.status == TaskStatus.PENDING
        ]
        if not pending:
            log_event(logger, "processor.idle", user_id=str(user_id))
            return ProcessOutcome(kind=OutcomeKind.IDLE)

        for task in sorted(pending, key=lambda t: (t.created_at, t.id)):
            if self._tasks.claim_task(task.id):
                return self._run(task)
            log_event(logger, "processor.claim.lost", task_id=task.id)

        return ProcessOutcome(kind=OutcomeKind.IDLE)

    def _run(self, task: BackgroundTask) -> ProcessOutcome:
        task_id, task_type = task.id, task.type
        token = set_background_task_context(task_id)
        start = time.monotonic()
        log_event(logger, "processor.task.start", task_id=task_id, task_type=task_type)
        try:
            params = load_task_params(task.result)
            if task_type == TaskType.RECEIPT_OCR:
                outcome = self._process_receipt_ocr(task, params)
            elif task_type == TaskType.BATCH_UPLOAD:
                outcome = self._process_batch_upload(task, params)
            elif task_type == TaskType.EXPENSE_EXPORT:
                outcome = self._process_expense_export(task, params)
            else:
                self._tasks.update_task_status(
                    task_id,
                    TaskStatus.FAILED,
                    result=None,
                    error=f"Unknown task type: {task_type}",
                )
                outcome = ProcessOutcome(
                    kind=OutcomeKind.UNKNOWN_TYPE, task_id=task_id, task_type=task_type
                )
        except Exception as e:
            log_exception(
                logger,
                "processor.task.error",
                task_id=task_id,
                task_type=task_type,
                duration_ms=monotonic_ms(start),
            )
            self._tasks.update_task_status(task_id, TaskStatus.FAILED, result=None, error=str(e))
            outcome = ProcessOutcome(
                kind=OutcomeKind.ERROR, task_id=task_id, task_type=task_type, error=str(e)
            )
        finally:
            reset_background_task_context(token)

        log_event(
            logger,
            "processor.task.finish",
            task_id=task_id,
            task_type=task_type,
            outcome=outcome.kind.value,
            duration_ms=monotonic_ms(start),
        )
        return outcome

    def _process_receipt_ocr(
        self, task: BackgroundTask, params: dict[str, Any]
    ) -> ProcessOutcome:
        task_id = task.id
        expense_id = params.get("expenseId")
        receipt_path = params.get("receiptPath")
        if expense_id in (None, "") or not receipt_path:
            raise ValidationError("Missing required task details: expenseId or receiptPath")

        expense = self._expenses.get_expense(int(expense_id))
        if not expense or expense.user_id != task.user_id:
            raise NotFoundError(f"Expense {expense_id} not found")

        try:
            stored = self._files.download(receipt_path)
        except StorageError as e:
            raise NotFoundError(f"Receipt file {receipt_path} not found or empty") from e
        if not stored.data:
            raise NotFoundError(f"Receipt file {receipt_path} not found or empty")

        options = OcrOptions.from_settings(params.get("template"))
        mime_type = (
            stored.content_type or guess_content_type(receipt_path) or "application/octet-stream"
        )
        ocr = self._ocr.process(stored.data, mime_type, options=options)

        if not ocr.success:
            self._expenses.update_expense(expense.id, {"status": ExpenseStatus.OCR_FAILED})
            self._tasks.update_task_status(
                task_id, TaskStatus.FAILED, result=None, error=ocr.error
            )
            return ProcessOutcome(
                kind=OutcomeKind.OCR_FAILED,
                task_id=task_id,
                task_type=TaskType.RECEIPT_OCR.value,
                expense_id=expense.id,
                error=ocr.error,
            )

        patch = build_expense_patch(ocr.extracted_data, expense)
        self._expenses.update_expense(expense.id, patch)
        self._tasks.update_task_status(
            task_id,
            TaskStatus.COMPLETED,
            result={"message": OCR_COMPLETED_MESSAGE, "extractedData": ocr.extracted_data},
        )
        return ProcessOutcome(
            kind=OutcomeKind.COMPLETED,
            task_id=task_id,
            task_type=TaskType.RECEIPT_OCR.value,
            expense_id=expense.id,
            extracted_data=ocr.extracted_data,
        )

    def _process_batch_upload(
        self, task: BackgroundTask, params: dict[str, Any]
    ) -> ProcessOutcome:
        task_id, user_id = task.id, task.user_id
        items = params.get("items") or []
        if not isinstance(items, list) or not items:
            raise ValidationError("Batch upload has no items")
        for item in items:
            if not isinstance(item, dict) or not item.get("expenseId") or not item.get(
                "receiptPath"
            ):
                raise ValidationError("Missing required task details: expenseId or receiptPath")

        template = params.get("template")
        task_ids: list[int] = []
        for item in items:
            child = self._tasks.create_task(
                user_id=user_id,
                type=TaskType.RECEIPT_OCR,
                result={
                    "expenseId": item["expenseId"],
                    "receiptPath": item["receiptPath"],
                    "template": template,
                },
            )
            task_ids.append(child.id)

        result = {
            "message": f"Queued {len(task_ids)} receipts for OCR processing",
            "taskIds": task_ids,
        }
        self._tasks.update_task_status(task_id, TaskStatus.COMPLETED, result=result)
        return ProcessOutcome(
            kind=OutcomeKind.COMPLETED,
            task_id=task_id,
            task_type=TaskType.BATCH_UPLOAD.value,
            result=result,
        )

    def _process_expense_export(
        self, task: BackgroundTask, params: dict[str, Any]
    ) -> ProcessOutcome:
        task_id, user_id = task.id, task.user_id
        fmt = parse_export_format(params.get("format"))
        filters = ExpenseFilters.from_params(params.get("filters"))
        expenses = self._expenses.list_expenses(user_id, filters)

        key = export_key(user_id=user_id, task_id=task_id, fmt=fmt)
        self._files.put(
            key=key,
            body=render_expenses(expenses, fmt=fmt),
            content_type=EXPORT_CONTENT_TYPES[fmt],
        )

        result = {
            "message": "Export completed successfully",
            "fileKey": key,
            "format": fmt,
            "rowCount": len(expenses),
        }
        self._tasks.update_task_status(task_id, TaskStatus.COMPLETED, result=result)
        return ProcessOutcome(
            kind=OutcomeKind.COMPLETED,
            task_id=task_id,
            task_type=TaskType.EXPENSE_EXPORT.value,
            result=result,
        )


def build_task_processor(
    session: Session,
    *,
    files: FileStore | None = None,
    provider: OcrProvider | None = None,
) -> TaskProcessor:
    return TaskProcessor(
        tasks=SqlTaskStore(session),
        expenses=SqlExpenseStore(session),
        files=files or get_storage(),
        ocr=ReceiptOcrService(provider or get_ocr_provider(), cache=SqlOcrCache(session)),
    )
