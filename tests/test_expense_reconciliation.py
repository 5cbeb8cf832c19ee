from __future__ import annotations

from expense_tracker.modules.expenses.models import Expense, ExpenseStatus
from expense_tracker.modules.expenses.reconciliation import build_expense_patch

EXTRACTED = {
    "vendor": "Blue Bottle",
    "date": "2024-05-01",
    "total": "7.50",
    "cost": "7.50",
    "type": "Food",
    "description": "Receipt: Blue Bottle",
}


def _placeholder_expense() -> Expense:
    return Expense(
        trip_name="Berlin",
        date=None,
        cost="0",
        type="General Expense",
        vendor="Unknown Vendor",
        location="Unknown Location",
        comments="",
        status=ExpenseStatus.PROCESSING,
    )


def test_placeholders_are_replaced():
    patch = build_expense_patch(EXTRACTED, _placeholder_expense())

    assert patch == {
        "vendor": "Blue Bottle",
        "date": "2024-05-01",
        "cost": "7.50",
        "type": "Food",
        "comments": "Receipt: Blue Bottle",
        "status": ExpenseStatus.COMPLETE,
    }


def test_user_values_are_kept():
    expense = _placeholder_expense()
    expense.vendor = "Blue Bottle Coffee (airport)"
    expense.cost = "8.00"
    expense.comments = "client meeting"

    patch = build_expense_patch(EXTRACTED, expense)

    assert "vendor" not in patch
    assert "cost" not in patch
    assert "comments" not in patch
    assert patch["status"] == ExpenseStatus.COMPLETE


def test_cost_falls_back_to_total():
    patch = build_expense_patch({"total": "3.20"}, _placeholder_expense())

    assert patch["cost"] == "3.20"


def test_applying_the_same_data_twice_is_a_noop():
    expense = _placeholder_expense()
    for key, value in build_expense_patch(EXTRACTED, expense).items():
        setattr(expense, key, value)

    assert build_expense_patch(EXTRACTED, expense) == {"status": ExpenseStatus.COMPLETE}
