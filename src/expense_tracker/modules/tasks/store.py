"""
Persistence for background task records.

The processor only talks to the ``TaskStore`` protocol. ``SqlTaskStore`` is the SQLAlchemy
implementation used by the API and the worker; it also normalizes legacy payload shapes
(``result`` stored as a JSON string) into the canonical dict form.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Final, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from expense_tracker.core.errors import NotFoundError, ValidationError
from expense_tracker.core.logging import get_logger, log_event
from expense_tracker.core.models import utcnow
from expense_tracker.modules.tasks.models import BackgroundTask, TaskStatus, TaskType

logger = get_logger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset()


class TaskStore(Protocol):
    def create_task(
        self,
        *,
        user_id: uuid.UUID,
        type: str,
        status: str = TaskStatus.PENDING,
        result: dict[str, Any] | None = None,
    ) -> BackgroundTask: ...

    def get_tasks_by_user_id(self, user_id: uuid.UUID) -> list[BackgroundTask]: ...

    def get_task(self, task_id: int) -> BackgroundTask | None: ...

    def update_task_status(
        self,
        task_id: int,
        status: str,
        *,
        result: dict[str, Any] | None | _Unset = UNSET,
        error: str | None = None,
    ) -> BackgroundTask: ...

    def claim_task(self, task_id: int) -> bool: ...


def parse_task_type(value: str) -> TaskType:
    try:
        return TaskType(value)
    except ValueError as e:
        raise ValidationError(f"Invalid task type: {value}") from e


def parse_task_status(value: str) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError as e:
        raise ValidationError(f"Invalid task status: {value}") from e


def load_task_params(raw: object) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise ValidationError("Task parameters must be a JSON object")
    return raw


class SqlTaskStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_task(
        self,
        *,
        user_id: uuid.UUID,
        type: str,
        status: str = TaskStatus.PENDING,
        result: dict[str, Any] | None = None,
    ) -> BackgroundTask:
        task = BackgroundTask(
            user_id=user_id,
            type=parse_task_type(type).value,
            status=parse_task_status(status),
            result=result,
            error=None,
        )
        self._session.add(task)
        self._session.commit()
        self._session.refresh(task)
        log_event(
            logger,
            "task.created",
            task_id=task.id,
            task_type=task.type,
            status=task.status.value,
        )
        return task

    def get_tasks_by_user_id(self, user_id: uuid.UUID) -> list[BackgroundTask]:
        return list(
            self._session.scalars(
                select(BackgroundTask)
                .where(BackgroundTask.user_id == user_id)
                .order_by(BackgroundTask.created_at.desc(), BackgroundTask.id.desc())
            )
        )

    def get_task(self, task_id: int) -> BackgroundTask | None:
        return self._session.scalar(select(BackgroundTask).where(BackgroundTask.id == task_id))

    def update_task_status(
        self,
        task_id: int,
        status: str,
        *,
        result: dict[str, Any] | None | _Unset = UNSET,
        error: str | None = None,
    ) -> BackgroundTask:
        new_status = parse_task_status(status)
        if not self._session.is_active:
            # A failed flush earlier in the unit of work; start clean so the failure is recorded.
            self._session.rollback()
        task = self.get_task(task_id)
        if not task:
            raise NotFoundError(f"Background task {task_id} not found")

        if task.status.is_terminal:
            log_event(
                logger,
                "task.status.ignored",
                task_id=task.id,
                status=task.status.value,
                requested_status=new_status.value,
            )
            return task

        prev_status = task.status
        task.status = new_status
        if not isinstance(result, _Unset):
            task.result = result
        task.error = error if new_status == TaskStatus.FAILED else None
        task.updated_at = utcnow()
        self._session.add(task)
        self._session.commit()
        self._session.refresh(task)
        log_event(
            logger,
            "task.status.changed",
            task_id=task.id,
            task_type=task.type,
            from_status=prev_status.value,
            to_status=task.status.value,
            error=task.error,
        )
        return task

    def claim_task(self, task_id: int) -> bool:
        """Atomically move a task from pending to processing.

        Returns False when the task was not pending anymore, e.g. another worker claimed it
        between listing and claiming.
        """
        res = self._session.execute(
            update(BackgroundTask)
            .where(BackgroundTask.id == task_id, BackgroundTask.status == TaskStatus.PENDING)
            .values(status=TaskStatus.PROCESSING, error=None, updated_at=utcnow())
        )
        if res.rowcount != 1:
            self._session.rollback()
            return False
        self._session.commit()
        log_event(
            logger,
            "task.status.changed",
            task_id=task_id,
            from_status=TaskStatus.PENDING.value,
            to_status=TaskStatus.PROCESSING.value,
        )
        return True
