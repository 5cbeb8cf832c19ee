from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from sqlalchemy.orm import Session

from expense_tracker.api.deps import get_current_user
from expense_tracker.core.config import settings
from expense_tracker.core.db import db_session
from expense_tracker.core.logging import get_logger, log_event
from expense_tracker.modules.expenses.schemas import (
    BatchUploadOut,
    ExpenseCreateIn,
    ExpenseOut,
    ExpenseUpdateIn,
    ReceiptQueuedOut,
)
from expense_tracker.modules.expenses.service import (
    ExpenseFilters,
    ReceiptUpload,
    batch_upload_receipts,
    create_expense,
    delete_expense,
    get_expense_for_user,
    list_expenses,
    queue_receipt_ocr,
    update_expense,
)
from expense_tracker.modules.identity.models import User
from expense_tracker.modules.ocr.service import OcrOptions
from expense_tracker.worker.tasks import process_next_task

router = APIRouter(tags=["expenses"])
logger = get_logger(__name__)


def _enqueue_processing(user: User) -> None:
    if not settings.auto_process_uploads:
        return
    async_result = process_next_task.delay(str(user.id))
    log_event(
        logger,
        "celery.task.enqueued",
        task_name="process_next_task",
        celery_task_id=async_result.id,
    )


async def _read_upload(upload: UploadFile) -> ReceiptUpload:
    body = await upload.read()
    filename = upload.filename or "receipt.bin"
    log_event(
        logger,
        "upload.received",
        filename=filename,
        content_type=upload.content_type,
        byte_size=len(body),
    )
    return ReceiptUpload(filename=filename, content_type=upload.content_type, body=body)


@router.get("/expenses", response_model=list[ExpenseOut])
def list_expenses_endpoint(
    start_date: str | None = None,
    end_date: str | None = None,
    trip_name: str | None = None,
    type: str | None = None,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> list[ExpenseOut]:
    filters = ExpenseFilters(
        start_date=start_date, end_date=end_date, trip_name=trip_name, type=type
    )
    expenses = list_expenses(session, user_id=user.id, filters=filters)
    return [ExpenseOut.model_validate(e, from_attributes=True) for e in expenses]


@router.post("/expenses", response_model=ExpenseOut)
def create_expense_endpoint(
    payload: ExpenseCreateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseOut:
    expense = create_expense(session, user=user, **payload.model_dump())
    return ExpenseOut.model_validate(expense, from_attributes=True)


@router.post("/expenses/batch-upload", response_model=BatchUploadOut)
async def batch_upload_endpoint(
    uploads: list[UploadFile] = File(...),
    trip_name: str | None = Form(None),
    template: str | None = Form(None),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> BatchUploadOut:
    options = OcrOptions.from_settings(template)
    receipts = [await _read_upload(upload) for upload in uploads]
    expenses, task = batch_upload_receipts(
        session,
        user=user,
        uploads=receipts,
        trip_name=trip_name,
        template=options.template,
    )
    _enqueue_processing(user)
    return BatchUploadOut(
        expenses=[ExpenseOut.model_validate(e, from_attributes=True) for e in expenses],
        task_id=task.id,
    )


@router.get("/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense_endpoint(
    expense_id: int,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseOut:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    return ExpenseOut.model_validate(expense, from_attributes=True)


@router.patch("/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense_endpoint(
    expense_id: int,
    payload: ExpenseUpdateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ExpenseOut:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    expense = update_expense(
        session, expense=expense, changes=payload.model_dump(exclude_unset=True)
    )
    return ExpenseOut.model_validate(expense, from_attributes=True)


@router.delete("/expenses/{expense_id}")
def delete_expense_endpoint(
    expense_id: int,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> Response:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    delete_expense(session, expense=expense)
    return Response(status_code=204)


@router.post("/expenses/{expense_id}/receipt", response_model=ReceiptQueuedOut)
async def upload_receipt_endpoint(
    expense_id: int,
    upload: UploadFile = File(...),
    template: str | None = Form(None),
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> ReceiptQueuedOut:
    expense = get_expense_for_user(session, expense_id=expense_id, user=user)
    options = OcrOptions.from_settings(template)
    receipt = await _read_upload(upload)
    expense, task = queue_receipt_ocr(
        session, expense=expense, user=user, upload=receipt, template=options.template
    )
    _enqueue_processing(user)
    return ReceiptQueuedOut(
        expense=ExpenseOut.model_validate(expense, from_attributes=True), task_id=task.id
    )
