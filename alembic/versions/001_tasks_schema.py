"""Tasks table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Per-user isolation is enforced by the store (owner filter on every write) and,
on hosted Postgres, by row-level security policies managed outside Alembic.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(280), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(11), nullable=False, server_default="todo"),
        sa.Column("priority", sa.String(6), nullable=False, server_default="medium"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("length(title) BETWEEN 1 AND 280", name="ck_tasks_title_length"),
        sa.CheckConstraint(
            "status IN ('todo', 'in_progress', 'done')", name="ck_tasks_status"
        ),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="ck_tasks_priority"),
    )
    op.create_index("ix_tasks_user_id", "tasks", ["user_id"])
    # Streak lookups: completed tasks per user by date
    op.create_index("ix_tasks_user_completed_at", "tasks", ["user_id", "completed_at"])


def downgrade() -> None:
    op.drop_index("ix_tasks_user_completed_at", table_name="tasks")
    op.drop_index("ix_tasks_user_id", table_name="tasks")
    op.drop_table("tasks")
