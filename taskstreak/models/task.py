import enum
import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import CheckConstraint, Date, DateTime, Enum, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from taskstreak.models.base import Base, TimestampMixin


class TaskStatus(str, enum.Enum):
    todo = "todo"
    in_progress = "in_progress"
    done = "done"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


def _new_id() -> str:
    return str(uuid.uuid4())


class Task(Base, TimestampMixin):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("length(title) BETWEEN 1 AND 280", name="ck_tasks_title_length"),
        Index("ix_tasks_user_id", "user_id"),
        Index("ix_tasks_user_completed_at", "user_id", "completed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(280), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, native_enum=False), nullable=False, default=TaskStatus.todo
    )
    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority, native_enum=False), nullable=False, default=TaskPriority.medium
    )
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    # Non-null exactly while status == done
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
