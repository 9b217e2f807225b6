import enum
from datetime import UTC, date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from taskstreak.models.task import TaskPriority, TaskStatus

TITLE_MAX_LENGTH = 280


class TaskCreate(BaseModel):
    model_config = {"str_strip_whitespace": True, "extra": "forbid"}
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.medium
    due_date: Optional[date] = None


class TaskUpdate(BaseModel):
    """Partial update. Only fields explicitly set are written."""

    model_config = {"str_strip_whitespace": True, "extra": "forbid"}
    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _required_fields_not_null(self):
        for name in ("title", "status", "priority"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class TaskResponse(BaseModel):
    model_config = {"from_attributes": True}
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    @field_validator("completed_at", "created_at")
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # SQL rows come back naive; they are stored as UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class TaskEventType(str, enum.Enum):
    insert = "insert"
    update = "update"
    delete = "delete"


class TaskEvent(BaseModel):
    """One change-feed notification. Delete events may carry only the id."""

    type: TaskEventType
    task_id: str
    task: Optional[TaskResponse] = None

    @model_validator(mode="after")
    def _task_matches_event(self):
        if self.type != TaskEventType.delete and self.task is None:
            raise ValueError(f"{self.type.value} event requires a task payload")
        if self.task is not None and self.task.id != self.task_id:
            raise ValueError("task_id does not match task payload")
        return self

    @classmethod
    def inserted(cls, task: TaskResponse) -> "TaskEvent":
        return cls(type=TaskEventType.insert, task_id=task.id, task=task)

    @classmethod
    def updated(cls, task: TaskResponse) -> "TaskEvent":
        return cls(type=TaskEventType.update, task_id=task.id, task=task)

    @classmethod
    def deleted(cls, task_id: str) -> "TaskEvent":
        return cls(type=TaskEventType.delete, task_id=task_id)
