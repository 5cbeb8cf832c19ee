from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import expense_tracker.models  # noqa: F401
# isort: on

import time
import uuid
from typing import Any

from expense_tracker.core.db import session_scope
from expense_tracker.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_celery_task_context,
    set_celery_task_context,
)
from expense_tracker.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="process_next_task", bind=True)
def process_next_task(self, user_id: str) -> dict[str, Any]:
    from expense_tracker.modules.tasks.processor import build_task_processor

    task_id = getattr(self.request, "id", None)
    token = set_celery_task_context(task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="process_next_task",
        celery_task_id=task_id,
        user_id=user_id,
    )
    try:
        with session_scope() as session:
            outcome = build_task_processor(session).process_next(uuid.UUID(user_id))
        log_event(
            logger,
            "celery.task.finish",
            task_name="process_next_task",
            celery_task_id=task_id,
            user_id=user_id,
            outcome=outcome.kind.value,
            duration_ms=monotonic_ms(start),
        )
        return outcome.to_response()
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="process_next_task",
            celery_task_id=task_id,
            user_id=user_id,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_celery_task_context(token)
