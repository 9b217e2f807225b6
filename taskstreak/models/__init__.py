from taskstreak.models.base import Base, TimestampMixin
from taskstreak.models.task import Task, TaskPriority, TaskStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "Task",
    "TaskPriority",
    "TaskStatus",
]
