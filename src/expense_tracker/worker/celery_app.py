from __future__ import annotations

from celery import Celery

from expense_tracker.core.config import settings


def make_celery() -> Celery:
    app = Celery("expense_tracker", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment in {"dev", "test"},
        task_eager_propagates=True,
        task_track_started=True,
    )
    app.autodiscover_tasks(["expense_tracker.worker.tasks"])
    return app


celery_app = make_celery()
