from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_tracker.core.db import db_session
from expense_tracker.core.logging import set_user_context
from expense_tracker.core.security import decode_access_token
from expense_tracker.core.storage import ObjectStorage, get_storage
from expense_tracker.modules.identity.models import User
from expense_tracker.modules.ocr.providers import OcrProvider
from expense_tracker.modules.ocr.service import get_ocr_provider
from expense_tracker.modules.tasks.processor import TaskProcessor, build_task_processor

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(db_session),
) -> User:
    token = credentials.credentials if credentials else None
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user_id = decode_access_token(token)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = session.scalar(select(User).where(User.id == user_id))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    set_user_context(str(user.id))
    return user


def storage_dependency() -> ObjectStorage:
    return get_storage()


def ocr_provider_dependency() -> OcrProvider:
    return get_ocr_provider()


def task_processor_dependency(
    session: Session = Depends(db_session),
    storage: ObjectStorage = Depends(storage_dependency),
    provider: OcrProvider = Depends(ocr_provider_dependency),
) -> TaskProcessor:
    return build_task_processor(session, files=storage, provider=provider)
