"""Task store contract and the SQL-backed implementation."""

import logging
from datetime import UTC, datetime
from typing import Any, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskstreak.crud.tasks import crud_task
from taskstreak.schemas.task import TaskCreate, TaskEvent, TaskResponse, TaskUpdate
from taskstreak.services.change_feed import InProcessChangeFeed
from taskstreak.services.errors import TaskStoreError

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    """Persistent task storage. Every write is scoped by task id and owner."""

    async def list_tasks(self, user_id: str) -> list[TaskResponse]: ...

    async def insert(self, user_id: str, data: TaskCreate) -> TaskResponse: ...

    async def update(self, task_id: str, user_id: str, changes: TaskUpdate) -> None: ...

    async def delete(self, task_id: str, user_id: str) -> None: ...


def _naive_utc(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


class SqlTaskStore:
    """TaskStore on an async SQLAlchemy session factory.

    Each call runs in its own session and commits before returning. Committed
    writes are published to ``feed`` when one is attached.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: Optional[InProcessChangeFeed] = None,
    ):
        self._session_factory = session_factory
        self.feed = feed

    def _publish(self, user_id: str, event: TaskEvent) -> None:
        if self.feed is not None:
            self.feed.publish(user_id, event)

    async def list_tasks(self, user_id: str) -> list[TaskResponse]:
        try:
            async with self._session_factory() as db:
                rows = await crud_task.get_for_user(db, user_id)
                return [TaskResponse.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.error("Loading tasks for %s failed: %s", user_id, exc)
            raise TaskStoreError(f"Failed to load tasks: {exc}") from exc

    async def insert(self, user_id: str, data: TaskCreate) -> TaskResponse:
        try:
            async with self._session_factory() as db:
                task = await crud_task.create_for_user(db, user_id=user_id, obj_in=data)
                await db.commit()
                created = TaskResponse.model_validate(task)
        except SQLAlchemyError as exc:
            logger.error("Inserting task for %s failed: %s", user_id, exc)
            raise TaskStoreError(f"Failed to add task: {exc}") from exc
        self._publish(user_id, TaskEvent.inserted(created))
        return created

    async def update(self, task_id: str, user_id: str, changes: TaskUpdate) -> None:
        values = {
            field: _naive_utc(value)
            for field, value in changes.model_dump(exclude_unset=True).items()
        }
        try:
            async with self._session_factory() as db:
                task = await crud_task.get_with_ownership(db, task_id, user_id)
                if task is None:
                    raise TaskStoreError(f"Task {task_id} not found")
                task = await crud_task.update(db, db_obj=task, obj_in=values)
                await db.commit()
                updated = TaskResponse.model_validate(task)
        except SQLAlchemyError as exc:
            logger.error("Updating task %s failed: %s", task_id, exc)
            raise TaskStoreError(f"Failed to update task: {exc}") from exc
        self._publish(user_id, TaskEvent.updated(updated))

    async def delete(self, task_id: str, user_id: str) -> None:
        try:
            async with self._session_factory() as db:
                task = await crud_task.get_with_ownership(db, task_id, user_id)
                if task is None:
                    raise TaskStoreError(f"Task {task_id} not found")
                await crud_task.remove(db, db_obj=task)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Deleting task %s failed: %s", task_id, exc)
            raise TaskStoreError(f"Failed to delete task: {exc}") from exc
        self._publish(user_id, TaskEvent.deleted(task_id))
