from __future__ import annotations

from sqlalchemy import JSON, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from expense_tracker.core.models import Base, Timestamped, UUIDPrimaryKey


class OcrResultCache(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "ocr_result_cache"
    __table_args__ = (
        UniqueConstraint("content_hash", "template", name="uq_ocr_result_cache_content"),
    )

    content_hash: Mapped[str] = mapped_column(String(64), index=True)
    template: Mapped[str] = mapped_column(String(50), default="general")
    provider: Mapped[str] = mapped_column(String(50), default="")
    schema_version: Mapped[int] = mapped_column(Integer, default=1)
    response_json: Mapped[dict] = mapped_column(JSON, default=dict)
