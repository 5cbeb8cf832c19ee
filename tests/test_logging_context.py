from __future__ import annotations

import json
import logging

from expense_tracker.core.logging import (
    JsonFormatter,
    log_event,
    reset_background_task_context,
    reset_celery_task_context,
    set_background_task_context,
    set_celery_task_context,
)


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(JsonFormatter())
        self.lines: list[dict] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(json.loads(self.format(record)))


def _capture(name: str) -> tuple[logging.Logger, _ListHandler]:
    handler = _ListHandler()
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger, handler


def test_task_ids_are_attached_while_context_is_set():
    logger, handler = _capture("expense_tracker.tests.task_context")

    task_token = set_background_task_context(42)
    celery_token = set_celery_task_context("celery-abc")
    try:
        log_event(logger, "processor.task.start", task_type="receipt_ocr", skipped=None)
    finally:
        reset_celery_task_context(celery_token)
        reset_background_task_context(task_token)
    log_event(logger, "processor.idle")

    inside, outside = handler.lines
    assert inside["event"] == "processor.task.start"
    assert inside["background_task_id"] == 42
    assert inside["celery_task_id"] == "celery-abc"
    assert inside["task_type"] == "receipt_ocr"
    assert "skipped" not in inside
    assert "background_task_id" not in outside
    assert "celery_task_id" not in outside
