from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from expense_tracker.modules.tasks.models import TaskStatus


class ExportFiltersIn(BaseModel):
    start_date: str | None = None
    end_date: str | None = None
    trip_name: str | None = None
    type: str | None = None


class ExportRequestIn(BaseModel):
    format: Literal["csv", "xlsx"] = "csv"
    filters: ExportFiltersIn = ExportFiltersIn()


class ExportQueuedOut(BaseModel):
    task_id: int
    status: TaskStatus
