"""
Merge OCR output into an existing expense without clobbering user input.

A field is only filled when the expense has nothing there yet, or when it still carries
the placeholder written at upload time (see ``expense_tracker.modules.expenses.models``).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from expense_tracker.modules.expenses.models import (
    GENERAL_EXPENSE,
    UNKNOWN_LOCATION,
    UNKNOWN_VENDOR,
    ZERO_COST,
    Expense,
    ExpenseStatus,
)


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _replaceable(current: object, placeholder: str | None = None) -> bool:
    if _is_blank(current):
        return True
    return placeholder is not None and current == placeholder


def _extracted(extracted: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = extracted.get(key)
        if not _is_blank(value):
            return str(value)
    return None


def build_expense_patch(extracted: Mapping[str, Any], expense: Expense) -> dict[str, Any]:
    patch: dict[str, Any] = {}

    vendor = _extracted(extracted, "vendor")
    if vendor and _replaceable(expense.vendor, UNKNOWN_VENDOR):
        patch["vendor"] = vendor

    date = _extracted(extracted, "date")
    if date and _replaceable(expense.date):
        patch["date"] = date

    cost = _extracted(extracted, "cost", "total")
    if cost and _replaceable(expense.cost, ZERO_COST):
        patch["cost"] = cost

    location = _extracted(extracted, "location")
    if location and _replaceable(expense.location, UNKNOWN_LOCATION):
        patch["location"] = location

    expense_type = _extracted(extracted, "type")
    if expense_type and _replaceable(expense.type, GENERAL_EXPENSE):
        patch["type"] = expense_type

    description = _extracted(extracted, "description")
    if description and not expense.comments:
        patch["comments"] = description

    patch["status"] = ExpenseStatus.COMPLETE
    return patch
