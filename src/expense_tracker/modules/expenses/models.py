from __future__ import annotations

import enum
import uuid

from sqlalchemy import Enum, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_tracker.core.models import Base, IntegerPrimaryKey, Timestamped

UNKNOWN_VENDOR = "Unknown Vendor"
UNKNOWN_LOCATION = "Unknown Location"
GENERAL_EXPENSE = "General Expense"
ZERO_COST = "0"


class ExpenseStatus(str, enum.Enum):
    COMPLETE = "complete"
    PROCESSING = "processing"
    OCR_FAILED = "ocr_failed"


class Expense(IntegerPrimaryKey, Timestamped, Base):
    __tablename__ = "expenses_expense"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), index=True
    )
    trip_name: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)

    # ISO YYYY-MM-DD; kept as text because OCR may hand back a date it could not normalize.
    date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    cost: Mapped[str] = mapped_column(String(32), default=ZERO_COST)
    type: Mapped[str] = mapped_column(String(100), default=GENERAL_EXPENSE)
    vendor: Mapped[str] = mapped_column(String(200), default=UNKNOWN_VENDOR)
    location: Mapped[str] = mapped_column(String(200), default=UNKNOWN_LOCATION)
    comments: Mapped[str] = mapped_column(Text, default="")

    receipt_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    status: Mapped[ExpenseStatus] = mapped_column(
        Enum(ExpenseStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        default=ExpenseStatus.COMPLETE,
        index=True,
    )

    user = relationship("User")
