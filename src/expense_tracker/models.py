"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

# Import User first - other models have relationships to User
from expense_tracker.modules.identity.models import User  # noqa: F401

from expense_tracker.modules.expenses.models import Expense  # noqa: F401
from expense_tracker.modules.ocr.models import OcrResultCache  # noqa: F401
from expense_tracker.modules.tasks.models import BackgroundTask  # noqa: F401
