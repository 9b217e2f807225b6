from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskstreak.crud.base import CRUDBase
from taskstreak.models.task import Task, TaskStatus
from taskstreak.schemas.task import TaskCreate, TaskUpdate


class CRUDTask(CRUDBase[Task, TaskCreate, TaskUpdate]):
    async def get_for_user(self, db: AsyncSession, user_id: str) -> Sequence[Task]:
        """All tasks owned by the user, newest first."""
        result = await db.execute(
            select(Task)
            .where(Task.user_id == user_id)
            .order_by(Task.created_at.desc(), Task.id.desc())
        )
        return result.scalars().all()

    async def get_with_ownership(
        self, db: AsyncSession, task_id: str, user_id: str
    ) -> Optional[Task]:
        """Return the task only if it belongs to the given user."""
        result = await db.execute(
            select(Task).where(Task.id == task_id, Task.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def create_for_user(
        self, db: AsyncSession, *, user_id: str, obj_in: TaskCreate
    ) -> Task:
        return await self.create(
            db, obj_in=obj_in, user_id=user_id, status=TaskStatus.todo, completed_at=None
        )


crud_task = CRUDTask(Task)
