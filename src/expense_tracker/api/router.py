from __future__ import annotations

from fastapi import APIRouter

from expense_tracker.modules.expenses.api import router as expenses_router
from expense_tracker.modules.exports.api import router as exports_router
from expense_tracker.modules.identity.api import router as identity_router
from expense_tracker.modules.tasks.api import router as tasks_router

router = APIRouter()

router.include_router(identity_router, prefix="/api")
router.include_router(expenses_router, prefix="/api")
router.include_router(tasks_router, prefix="/api")
router.include_router(exports_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
