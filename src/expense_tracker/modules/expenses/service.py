from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_tracker.core.errors import NotFoundError
from expense_tracker.core.logging import get_logger, log_event, log_exception
from expense_tracker.core.storage import StorageError, get_storage
from expense_tracker.modules.expenses.models import Expense, ExpenseStatus
from expense_tracker.modules.identity.models import User
from expense_tracker.modules.tasks.models import BackgroundTask, TaskType
from expense_tracker.modules.tasks.store import SqlTaskStore

logger = get_logger(__name__)

_EDITABLE_FIELDS = ("trip_name", "date", "cost", "type", "vendor", "location", "comments")


class ExpenseStore(Protocol):
    def get_expense(self, expense_id: int) -> Expense | None: ...

    def update_expense(self, expense_id: int, patch: dict[str, Any]) -> Expense: ...

    def list_expenses(
        self, user_id: uuid.UUID, filters: ExpenseFilters | None = None
    ) -> list[Expense]: ...


class SqlExpenseStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_expense(self, expense_id: int) -> Expense | None:
        return self._session.scalar(select(Expense).where(Expense.id == expense_id))

    def update_expense(self, expense_id: int, patch: dict[str, Any]) -> Expense:
        expense = self.get_expense(expense_id)
        if not expense:
            raise NotFoundError(f"Expense {expense_id} not found")
        for key, value in patch.items():
            setattr(expense, key, value)
        self._session.add(expense)
        self._session.commit()
        self._session.refresh(expense)
        log_event(
            logger,
            "expense.updated",
            expense_id=expense.id,
            fields=sorted(patch),
            status=expense.status.value,
        )
        return expense

    def list_expenses(
        self, user_id: uuid.UUID, filters: ExpenseFilters | None = None
    ) -> list[Expense]:
        return list_expenses(self._session, user_id=user_id, filters=filters)


@dataclass(frozen=True)
class ExpenseFilters:
    start_date: str | None = None
    end_date: str | None = None
    trip_name: str | None = None
    type: str | None = None

    @classmethod
    def from_params(cls, raw: dict[str, Any] | None) -> ExpenseFilters:
        raw = raw or {}
        return cls(
            start_date=raw.get("startDate") or None,
            end_date=raw.get("endDate") or None,
            trip_name=raw.get("tripName") or None,
            type=raw.get("type") or None,
        )


@dataclass(frozen=True)
class ReceiptUpload:
    filename: str
    content_type: str | None
    body: bytes


def list_expenses(
    session: Session, *, user_id: uuid.UUID, filters: ExpenseFilters | None = None
) -> list[Expense]:
    filters = filters or ExpenseFilters()
    stmt = select(Expense).where(Expense.user_id == user_id)
    # Dates are ISO strings, so lexical comparison matches calendar order.
    if filters.start_date:
        stmt = stmt.where(Expense.date >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(Expense.date <= filters.end_date)
    if filters.trip_name:
        stmt = stmt.where(Expense.trip_name == filters.trip_name)
    if filters.type:
        stmt = stmt.where(Expense.type == filters.type)
    return list(session.scalars(stmt.order_by(Expense.date.desc(), Expense.id.desc())))


def create_expense(session: Session, *, user: User, **fields: Any) -> Expense:
    expense = Expense(user_id=user.id, status=ExpenseStatus.COMPLETE)
    for key in _EDITABLE_FIELDS:
        if key in fields and fields[key] is not None:
            setattr(expense, key, fields[key])
    session.add(expense)
    session.commit()
    session.refresh(expense)
    return expense


def get_expense_for_user(session: Session, *, expense_id: int, user: User) -> Expense:
    expense = session.scalar(select(Expense).where(Expense.id == expense_id))
    if not expense:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
    if expense.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return expense


def update_expense(session: Session, *, expense: Expense, changes: dict[str, Any]) -> Expense:
    for key in _EDITABLE_FIELDS:
        if key not in changes:
            continue
        value = changes[key]
        if value is None and key not in {"trip_name", "date"}:
            continue
        setattr(expense, key, value)
    session.add(expense)
    session.commit()
    session.refresh(expense)
    return expense


def delete_expense(session: Session, *, expense: Expense) -> None:
    receipt_path = expense.receipt_path
    session.delete(expense)
    session.commit()

    if receipt_path:
        try:
            get_storage().delete(key=receipt_path)
        except (StorageError, OSError):
            log_exception(logger, "storage.gc.failure", storage_key=receipt_path)


def _store_receipt(*, user: User, upload: ReceiptUpload) -> str:
    key = f"receipts/{user.id}/{uuid.uuid4()}-{upload.filename}"
    stored = get_storage().put(key=key, body=upload.body, content_type=upload.content_type)
    return stored.key


def queue_receipt_ocr(
    session: Session,
    *,
    expense: Expense,
    user: User,
    upload: ReceiptUpload,
    template: str,
) -> tuple[Expense, BackgroundTask]:
    """Store the receipt, flag the expense as processing and queue a ``receipt_ocr`` task."""
    expense.receipt_path = _store_receipt(user=user, upload=upload)
    expense.status = ExpenseStatus.PROCESSING
    session.add(expense)
    session.commit()
    session.refresh(expense)

    task = SqlTaskStore(session).create_task(
        user_id=user.id,
        type=TaskType.RECEIPT_OCR,
        result={
            "expenseId": expense.id,
            "receiptPath": expense.receipt_path,
            "template": template,
        },
    )
    log_event(
        logger,
        "expense.receipt.queued",
        expense_id=expense.id,
        task_id=task.id,
        storage_key=expense.receipt_path,
        byte_size=len(upload.body),
    )
    return expense, task


def batch_upload_receipts(
    session: Session,
    *,
    user: User,
    uploads: list[ReceiptUpload],
    trip_name: str | None,
    template: str,
) -> tuple[list[Expense], BackgroundTask]:
    """Create one placeholder expense per receipt and a single ``batch_upload`` task.

    The batch task fans out into per-receipt ``receipt_ocr`` tasks when it is processed.
    """
    expenses: list[Expense] = []
    for upload in uploads:
        expense = Expense(
            user_id=user.id,
            trip_name=trip_name,
            receipt_path=_store_receipt(user=user, upload=upload),
            status=ExpenseStatus.PROCESSING,
        )
        session.add(expense)
        expenses.append(expense)
    session.commit()
    for expense in expenses:
        session.refresh(expense)

    task = SqlTaskStore(session).create_task(
        user_id=user.id,
        type=TaskType.BATCH_UPLOAD,
        result={
            "items": [
                {"expenseId": expense.id, "receiptPath": expense.receipt_path}
                for expense in expenses
            ],
            "template": template,
        },
    )
    log_event(
        logger,
        "expense.batch.queued",
        task_id=task.id,
        expense_count=len(expenses),
    )
    return expenses, task
