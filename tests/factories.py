"""Shared test data builders."""
from datetime import UTC, datetime
from typing import Optional

from taskstreak.models.task import TaskPriority, TaskStatus
from taskstreak.schemas.task import TaskResponse

USER_ID = "user-a"
OTHER_USER_ID = "user-b"
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


def make_task(
    task_id: str,
    *,
    user_id: str = USER_ID,
    title: str = "Task",
    status: TaskStatus = TaskStatus.todo,
    priority: TaskPriority = TaskPriority.medium,
    completed_at: Optional[datetime] = None,
    created_at: datetime = NOW,
    **extra,
) -> TaskResponse:
    return TaskResponse(
        id=task_id,
        user_id=user_id,
        title=title,
        status=status,
        priority=priority,
        completed_at=completed_at,
        created_at=created_at,
        **extra,
    )


def done_on(task_id: str, day: str, **extra) -> TaskResponse:
    """A done task completed at 10:00 UTC on ``day`` (YYYY-MM-DD)."""
    return make_task(
        task_id,
        status=TaskStatus.done,
        completed_at=datetime.fromisoformat(f"{day}T10:00:00+00:00"),
        **extra,
    )
