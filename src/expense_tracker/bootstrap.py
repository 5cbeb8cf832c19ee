from __future__ import annotations

from sqlalchemy import select

from expense_tracker.core.config import settings
from expense_tracker.core.db import engine, session_scope
from expense_tracker.core.logging import get_logger, log_event
from expense_tracker.core.models import Base
from expense_tracker.core.security import hash_password
from expense_tracker.modules.identity.models import User

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment in {"dev", "test"} and str(settings.database_url).startswith("sqlite"):
        import expense_tracker.models  # noqa: F401

        Base.metadata.create_all(engine)

    if not settings.init_user_email or not settings.init_user_password:
        return

    with session_scope() as session:
        existing = session.scalar(select(User).where(User.email == settings.init_user_email))
        if existing:
            return
        session.add(
            User(
                email=settings.init_user_email,
                full_name="Admin",
                password_hash=hash_password(settings.init_user_password),
                is_active=True,
            )
        )
        session.commit()
        log_event(logger, "bootstrap.user.created", email=settings.init_user_email)
