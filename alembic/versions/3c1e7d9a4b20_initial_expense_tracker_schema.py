"""initial expense tracker schema

Revision ID: 3c1e7d9a4b20
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3c1e7d9a4b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "identity_user",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("password_hash", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_identity_user_email", "identity_user", ["email"], unique=True)

    op.create_table(
        "expenses_expense",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "user_id", sa.Uuid(as_uuid=True), sa.ForeignKey("identity_user.id"), nullable=False
        ),
        sa.Column("trip_name", sa.String(length=200), nullable=True),
        sa.Column("date", sa.String(length=32), nullable=True),
        sa.Column("cost", sa.String(length=32), nullable=False),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("vendor", sa.String(length=200), nullable=False),
        sa.Column("location", sa.String(length=200), nullable=False),
        sa.Column("comments", sa.Text(), nullable=False),
        sa.Column("receipt_path", sa.String(length=1024), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False),
    )
    op.create_index("ix_expenses_expense_user_id", "expenses_expense", ["user_id"])
    op.create_index("ix_expenses_expense_trip_name", "expenses_expense", ["trip_name"])
    op.create_index("ix_expenses_expense_status", "expenses_expense", ["status"])

    op.create_table(
        "tasks_background_task",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "user_id", sa.Uuid(as_uuid=True), sa.ForeignKey("identity_user.id"), nullable=False
        ),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_tasks_background_task_user_id", "tasks_background_task", ["user_id"])
    op.create_index("ix_tasks_background_task_type", "tasks_background_task", ["type"])
    op.create_index("ix_tasks_background_task_status", "tasks_background_task", ["status"])

    op.create_table(
        "ocr_result_cache",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("template", sa.String(length=50), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("response_json", sa.JSON(), nullable=False),
        sa.UniqueConstraint("content_hash", "template", name="uq_ocr_result_cache_content"),
    )
    op.create_index("ix_ocr_result_cache_content_hash", "ocr_result_cache", ["content_hash"])


def downgrade() -> None:
    op.drop_index("ix_ocr_result_cache_content_hash", table_name="ocr_result_cache")
    op.drop_table("ocr_result_cache")
    op.drop_index("ix_tasks_background_task_status", table_name="tasks_background_task")
    op.drop_index("ix_tasks_background_task_type", table_name="tasks_background_task")
    op.drop_index("ix_tasks_background_task_user_id", table_name="tasks_background_task")
    op.drop_table("tasks_background_task")
    op.drop_index("ix_expenses_expense_status", table_name="expenses_expense")
    op.drop_index("ix_expenses_expense_trip_name", table_name="expenses_expense")
    op.drop_index("ix_expenses_expense_user_id", table_name="expenses_expense")
    op.drop_table("expenses_expense")
    op.drop_index("ix_identity_user_email", table_name="identity_user")
    op.drop_table("identity_user")
