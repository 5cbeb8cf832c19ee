from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from expense_tracker.modules.tasks.models import TaskStatus


class TaskOut(BaseModel):
    id: int
    user_id: uuid.UUID
    type: str
    status: TaskStatus
    result: dict[str, Any] | None
    error: str | None
    created_at: datetime
    updated_at: datetime
