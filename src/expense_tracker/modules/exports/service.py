from __future__ import annotations

import csv
import io
import uuid
from decimal import Decimal, InvalidOperation

from openpyxl import Workbook
from openpyxl.styles import Font

from expense_tracker.core.errors import ValidationError
from expense_tracker.modules.expenses.models import Expense

EXPORT_CONTENT_TYPES: dict[str, str] = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Date", "date"),
    ("Trip", "trip_name"),
    ("Vendor", "vendor"),
    ("Type", "type"),
    ("Location", "location"),
    ("Cost", "cost"),
    ("Comments", "comments"),
    ("Status", "status"),
)


def parse_export_format(value: str | None) -> str:
    fmt = (value or "csv").strip().lower()
    if fmt not in EXPORT_CONTENT_TYPES:
        raise ValidationError(f"Unsupported export format: {value}")
    return fmt


def export_key(*, user_id: uuid.UUID, task_id: int, fmt: str) -> str:
    return f"exports/{user_id}/{task_id}.{fmt}"


def render_expenses(expenses: list[Expense], *, fmt: str) -> bytes:
    rows = [_row(expense) for expense in expenses]
    if fmt == "xlsx":
        return _build_xlsx(rows)
    return _build_csv(rows)


def _row(expense: Expense) -> list[str]:
    out: list[str] = []
    for _, attr in EXPORT_COLUMNS:
        value = getattr(expense, attr)
        if attr == "status":
            value = value.value
        out.append("" if value is None else str(value))
    return out


def _build_csv(rows: list[list[str]]) -> bytes:
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow([header for header, _ in EXPORT_COLUMNS])
    writer.writerows(rows)
    return out.getvalue().encode("utf-8")


def _build_xlsx(rows: list[list[str]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Expenses"

    for col, (header, _) in enumerate(EXPORT_COLUMNS, start=1):
        ws.cell(row=1, column=col, value=header).font = Font(bold=True)
    ws.column_dimensions["C"].width = 30
    ws.column_dimensions["G"].width = 45

    cost_col = next(i for i, (_, attr) in enumerate(EXPORT_COLUMNS, start=1) if attr == "cost")
    for row_idx, row in enumerate(rows, start=2):
        for col, value in enumerate(row, start=1):
            if col == cost_col:
                ws.cell(row=row_idx, column=col, value=_cost_cell(value))
            else:
                ws.cell(row=row_idx, column=col, value=value or None)

    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


def _cost_cell(value: str) -> float | str | None:
    if not value:
        return None
    try:
        return float(Decimal(value))
    except InvalidOperation:
        return value
