from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from expense_tracker.api.deps import get_current_user
from expense_tracker.core.db import db_session
from expense_tracker.core.security import create_access_token
from expense_tracker.modules.identity.models import User
from expense_tracker.modules.identity.schemas import TokenOut, UserOut
from expense_tracker.modules.identity.service import authenticate_user

router = APIRouter(tags=["identity"])


@router.post("/auth/token", response_model=TokenOut)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(db_session),
) -> TokenOut:
    user = authenticate_user(session, email=form_data.username, password=form_data.password)
    return TokenOut(access_token=create_access_token(user_id=user.id))


@router.get("/auth/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(user, from_attributes=True)
