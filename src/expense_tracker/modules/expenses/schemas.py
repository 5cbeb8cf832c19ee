from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from expense_tracker.modules.expenses.models import ExpenseStatus


class ExpenseCreateIn(BaseModel):
    trip_name: str | None = None
    date: str | None = None
    cost: str = "0"
    type: str = "General Expense"
    vendor: str = "Unknown Vendor"
    location: str = "Unknown Location"
    comments: str = ""


class ExpenseUpdateIn(BaseModel):
    trip_name: str | None = None
    date: str | None = None
    cost: str | None = None
    type: str | None = None
    vendor: str | None = None
    location: str | None = None
    comments: str | None = None


class ExpenseOut(BaseModel):
    id: int
    user_id: uuid.UUID
    trip_name: str | None
    date: str | None
    cost: str
    type: str
    vendor: str
    location: str
    comments: str
    receipt_path: str | None
    status: ExpenseStatus
    created_at: datetime
    updated_at: datetime


class ReceiptQueuedOut(BaseModel):
    expense: ExpenseOut
    task_id: int


class BatchUploadOut(BaseModel):
    expenses: list[ExpenseOut]
    task_id: int
