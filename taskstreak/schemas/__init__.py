from taskstreak.schemas.task import (
    TITLE_MAX_LENGTH,
    TaskCreate,
    TaskEvent,
    TaskEventType,
    TaskResponse,
    TaskUpdate,
)

__all__ = [
    "TITLE_MAX_LENGTH",
    "TaskCreate",
    "TaskEvent",
    "TaskEventType",
    "TaskResponse",
    "TaskUpdate",
]
