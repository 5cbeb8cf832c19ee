from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from expense_tracker.api.deps import get_current_user, storage_dependency
from expense_tracker.core.config import settings
from expense_tracker.core.db import db_session
from expense_tracker.core.logging import get_logger, log_event
from expense_tracker.core.storage import ObjectStorage, StorageError
from expense_tracker.modules.exports.schemas import ExportQueuedOut, ExportRequestIn
from expense_tracker.modules.exports.service import EXPORT_CONTENT_TYPES
from expense_tracker.modules.identity.models import User
from expense_tracker.modules.tasks.models import TaskStatus, TaskType
from expense_tracker.modules.tasks.store import SqlTaskStore
from expense_tracker.worker.tasks import process_next_task

router = APIRouter(tags=["exports"])
logger = get_logger(__name__)


@router.post("/export/expenses", response_model=ExportQueuedOut, status_code=202)
def create_export(
    payload: ExportRequestIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExportQueuedOut:
    filters = payload.filters
    task = SqlTaskStore(session).create_task(
        user_id=user.id,
        type=TaskType.EXPENSE_EXPORT,
        result={
            "format": payload.format,
            "filters": {
                "startDate": filters.start_date,
                "endDate": filters.end_date,
                "tripName": filters.trip_name,
                "type": filters.type,
            },
        },
    )
    if settings.auto_process_uploads:
        async_result = process_next_task.delay(str(user.id))
        log_event(
            logger,
            "celery.task.enqueued",
            task_name="process_next_task",
            celery_task_id=async_result.id,
            task_id=task.id,
        )
    return ExportQueuedOut(task_id=task.id, status=task.status)


@router.get("/export/{task_id}/download")
def download_export(
    task_id: int,
    session: Session = Depends(db_session),
    storage: ObjectStorage = Depends(storage_dependency),
    user: User = Depends(get_current_user),
) -> Response:
    task = SqlTaskStore(session).get_task(task_id)
    if not task or task.type != TaskType.EXPENSE_EXPORT:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export not found")
    if task.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    if task.status != TaskStatus.COMPLETED or not (task.result or {}).get("fileKey"):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Export not ready")

    key = task.result["fileKey"]
    fmt = task.result.get("format") or "csv"
    try:
        body = storage.get(key=key)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export not found") from e
    return Response(
        content=body,
        media_type=EXPORT_CONTENT_TYPES.get(fmt, "application/octet-stream"),
        headers={"Content-Disposition": f'attachment; filename="expenses-{task_id}.{fmt}"'},
    )
