"""Exceptions shared by the store, feed and synchronizer layers."""
from typing import Optional


class TaskValidationError(ValueError):
    """Rejected input; raised before any local or remote mutation."""


class TaskNotFoundError(LookupError):
    pass


class TaskStoreError(Exception):
    """A persistent-store read or write failed."""


class FeedUnavailableError(Exception):
    """The change feed cannot deliver events (quota, channel error, closed)."""


class TaskSyncError(Exception):
    """A synchronizer operation failed and its optimistic effect was rolled back."""

    def __init__(self, operation: str, task_id: Optional[str], message: str):
        super().__init__(message)
        self.operation = operation
        self.task_id = task_id
        self.message = message
