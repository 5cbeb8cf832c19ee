from __future__ import annotations

import enum
import uuid

from sqlalchemy import JSON, Enum, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_tracker.core.models import Base, IntegerPrimaryKey, Timestamped


def _values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class TaskType(str, enum.Enum):
    BATCH_UPLOAD = "batch_upload"
    EXPENSE_EXPORT = "expense_export"
    RECEIPT_OCR = "receipt_ocr"


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


class BackgroundTask(IntegerPrimaryKey, Timestamped, Base):
    __tablename__ = "tasks_background_task"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("identity_user.id"), index=True
    )
    # Stored as plain text so rows written by older releases with other types still load.
    type: Mapped[str] = mapped_column(String(50), index=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, native_enum=False, values_callable=_values), index=True
    )
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    user = relationship("User")
