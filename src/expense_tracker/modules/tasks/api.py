from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from expense_tracker.api.deps import get_current_user, task_processor_dependency
from expense_tracker.core.db import db_session
from expense_tracker.modules.identity.models import User
from expense_tracker.modules.tasks.processor import TaskProcessor
from expense_tracker.modules.tasks.schemas import TaskOut
from expense_tracker.modules.tasks.store import SqlTaskStore

router = APIRouter(tags=["tasks"])


@router.post("/background-processor/process-next")
def process_next_task_endpoint(
    processor: TaskProcessor = Depends(task_processor_dependency),
    user: User = Depends(get_current_user),
) -> JSONResponse:
    outcome = processor.process_next(user.id)
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_response())


@router.get("/background-tasks", response_model=list[TaskOut])
def list_tasks_endpoint(
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> list[TaskOut]:
    tasks = SqlTaskStore(session).get_tasks_by_user_id(user.id)
    return [TaskOut.model_validate(t, from_attributes=True) for t in tasks]


@router.get("/background-tasks/{task_id}", response_model=TaskOut)
def get_task_endpoint(
    task_id: int,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> TaskOut:
    task = SqlTaskStore(session).get_task(task_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    if task.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return TaskOut.model_validate(task, from_attributes=True)
