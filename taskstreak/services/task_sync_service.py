"""Optimistic task synchronization for one user session.

Every mutation is applied to the local list immediately, then written to the
store. A failed write raises TaskSyncError and is undone by rebuilding the
entry from its last stored version plus the writes still in flight, so one
failure never discards or resurrects another write's change.
Change-feed events and poll refreshes are merged into the same list by id, so
echoes of our own writes and duplicate deliveries are harmless.

Only one update source is live at a time: the feed consumer while streaming,
or a single scheduler job while polling.
"""

import asyncio
import enum
import logging
import uuid
from collections import defaultdict
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Optional, Type, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import BaseModel, ValidationError

from taskstreak.config import get_settings
from taskstreak.models.task import TaskStatus
from taskstreak.schemas.task import (
    TaskCreate,
    TaskEvent,
    TaskEventType,
    TaskResponse,
    TaskUpdate,
)
from taskstreak.services.change_feed import ChangeFeed, FeedSubscription
from taskstreak.services.errors import (
    FeedUnavailableError,
    TaskNotFoundError,
    TaskStoreError,
    TaskSyncError,
    TaskValidationError,
)
from taskstreak.services.scheduler_service import cancel_job, create_scheduler, schedule_poll
from taskstreak.services.streak_service import Instant, streak_for_tasks
from taskstreak.services.task_store import TaskStore

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"

SchemaType = TypeVar("SchemaType", bound=BaseModel)


class SyncMode(str, enum.Enum):
    idle = "idle"
    streaming = "streaming"
    polling = "polling"


@dataclass
class _PendingCreate:
    optimistic: TaskResponse
    # Resolves to the stored task, or None when the insert failed
    confirmed: "asyncio.Future[Optional[TaskResponse]]"


def is_temporary_id(task_id: str) -> bool:
    return task_id.startswith(TEMP_ID_PREFIX)


def _validate(schema: Type[SchemaType], data: Any) -> SchemaType:
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        detail = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}"
            for err in exc.errors()
        )
        raise TaskValidationError(detail) from exc


class TaskSynchronizer:
    """Local view of one user's tasks, kept in step with a TaskStore.

    Dependencies are passed in and owned by the caller, except the scheduler,
    which is created on demand (and shut down by ``stop``) when none is given.
    """

    def __init__(
        self,
        user_id: str,
        store: TaskStore,
        feed: Optional[ChangeFeed] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        *,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = get_settings()
        self.user_id = user_id
        self.store = store
        self.feed = feed
        self.poll_interval = poll_interval or settings.POLL_INTERVAL_SECONDS
        self.timeout = timeout or settings.STORE_TIMEOUT_SECONDS
        self._clock = clock or (lambda: datetime.now(UTC))
        self._scheduler = scheduler
        self._owns_scheduler = False
        self._poll_job_id = f"poll-tasks-{user_id}"

        self.mode = SyncMode.idle
        self.last_error: Optional[str] = None

        self._tasks: list[TaskResponse] = []
        self._pending_creates: dict[str, _PendingCreate] = {}
        self._pending_deletes: set[str] = set()
        # Last stored version of each task with writes or a delete outstanding,
        # and the changes still in flight for it, in call order
        self._bases: dict[str, TaskResponse] = {}
        self._writes: dict[str, list[dict[str, Any]]] = {}
        self._write_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._subscription: Optional[FeedSubscription] = None
        self._consumer: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Reads

    @property
    def tasks(self) -> list[TaskResponse]:
        return list(self._tasks)

    def current_tasks(self) -> list[TaskResponse]:
        return list(self._tasks)

    def get(self, task_id: str) -> Optional[TaskResponse]:
        index = self._index(task_id)
        return self._tasks[index] if index is not None else None

    def current_streak(self, now: Optional[Instant] = None) -> int:
        return streak_for_tasks(self._tasks, now if now is not None else self._clock())

    def acknowledge_error(self) -> None:
        self.last_error = None

    # ------------------------------------------------------------------
    # Local list helpers

    def _index(self, task_id: str) -> Optional[int]:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def _require(self, task_id: str) -> TaskResponse:
        task = self.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task

    def _replace(self, task: TaskResponse) -> bool:
        index = self._index(task.id)
        if index is None:
            return False
        self._tasks[index] = task
        return True

    def _remove(self, task_id: str) -> None:
        self._tasks = [t for t in self._tasks if t.id != task_id]

    def _replay(self, task_id: str) -> TaskResponse:
        """Stored version of a task with its in-flight changes applied on top."""
        task = self._bases[task_id]
        for changes in self._writes.get(task_id, ()):
            task = task.model_copy(update=changes)
        return task

    def _begin_write(self, task: TaskResponse, changes: dict[str, Any]) -> None:
        self._bases.setdefault(task.id, task)
        self._writes.setdefault(task.id, []).append(changes)
        self._replace(self._replay(task.id))

    def _settle_write(self, keys: list[str], changes: dict[str, Any], saved: bool) -> None:
        """Retire one write. Saved changes advance the base; the local entry is rebuilt."""
        for key in keys:
            writes = self._writes.get(key, [])
            if any(w is changes for w in writes):
                break
        else:
            return
        remaining = [w for w in writes if w is not changes]
        if remaining:
            self._writes[key] = remaining
        else:
            del self._writes[key]
        if saved:
            self._bases[key] = self._bases[key].model_copy(update=changes)
        self._replace(self._replay(key))
        self._release(key)

    def _release(self, task_id: str) -> None:
        if task_id not in self._writes and task_id not in self._pending_deletes:
            self._bases.pop(task_id, None)

    def _drop_tracking(self, task_id: str) -> None:
        self._writes.pop(task_id, None)
        self._bases.pop(task_id, None)

    def _fail(self, operation: str, task_id: Optional[str], exc: BaseException) -> TaskSyncError:
        if isinstance(exc, asyncio.TimeoutError):
            message = f"Failed to {operation} task: timed out after {self.timeout:g}s"
        else:
            message = str(exc) or f"Failed to {operation} task"
        self.last_error = message
        logger.warning("Rolled back %s of %s for %s: %s", operation, task_id, self.user_id, message)
        return TaskSyncError(operation, task_id, message)

    async def _call(self, coro):
        return await asyncio.wait_for(coro, timeout=self.timeout)

    # ------------------------------------------------------------------
    # Mutations

    async def create(self, data: TaskCreate | dict[str, Any]) -> TaskResponse:
        payload = _validate(TaskCreate, data)
        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        optimistic = TaskResponse(
            id=temp_id,
            user_id=self.user_id,
            status=TaskStatus.todo,
            completed_at=None,
            created_at=self._clock(),
            **payload.model_dump(),
        )
        self._tasks.insert(0, optimistic)
        pending = _PendingCreate(optimistic, asyncio.get_running_loop().create_future())
        self._pending_creates[temp_id] = pending

        try:
            created = await self._call(self.store.insert(self.user_id, payload))
        except Exception as exc:
            del self._pending_creates[temp_id]
            self._remove(temp_id)
            self._drop_tracking(temp_id)
            pending.confirmed.set_result(None)
            raise self._fail("add", temp_id, exc) from exc

        del self._pending_creates[temp_id]
        self._confirm_create(pending, created)
        pending.confirmed.set_result(created)
        self.last_error = None
        return created

    def _confirm_create(self, pending: _PendingCreate, created: TaskResponse) -> None:
        """Swap the temporary entry for the stored task, keeping local edits made meanwhile.

        Edits to a temporary entry are always still in flight (they wait for
        this confirmation), so they move to the permanent id and are replayed
        on top of the stored row.
        """
        temp_id = pending.optimistic.id
        writes = self._writes.pop(temp_id, None)
        if self._bases.pop(temp_id, None) is not None:
            self._bases[created.id] = created
        if writes:
            self._writes[created.id] = writes

        index = self._index(temp_id)
        if index is None:
            # Deleted locally while the insert was in flight
            return
        confirmed = self._replay(created.id) if writes else created

        if self._index(created.id) is None:
            self._tasks[index] = confirmed
        else:
            # A remote insert for the same row arrived before the confirmation
            del self._tasks[index]
            self._replace(confirmed)

    def _completion_changes(self, previous: TaskResponse, changes: dict[str, Any]) -> dict[str, Any]:
        """Keep completed_at non-null exactly while status is done."""
        status = changes.get("status", previous.status)
        if status != TaskStatus.done:
            if changes.get("completed_at") is not None:
                raise TaskValidationError("completed_at can only be set on done tasks")
            if previous.completed_at is not None:
                changes["completed_at"] = None
        elif previous.status != TaskStatus.done:
            if changes.get("completed_at") is None:
                changes["completed_at"] = self._clock()
        elif "completed_at" in changes and changes["completed_at"] is None:
            raise TaskValidationError("completed_at cannot be cleared while the task is done")
        return changes

    async def _await_create(self, task_id: str) -> Optional[TaskResponse]:
        pending = self._pending_creates.get(task_id)
        if pending is None:
            return None
        return await pending.confirmed

    async def update(self, task_id: str, fields: TaskUpdate | dict[str, Any]) -> None:
        previous = self._require(task_id)
        changes = _validate(TaskUpdate, fields).model_dump(exclude_unset=True)
        changes = self._completion_changes(previous, changes)
        if not changes:
            return

        self._begin_write(previous, changes)
        keys = [task_id]
        saved = False
        try:
            target_id = task_id
            if is_temporary_id(task_id) and task_id in self._pending_creates:
                created = await self._await_create(task_id)
                if created is None:
                    raise TaskStoreError(f"Task {task_id} was never saved")
                target_id = created.id
                keys.insert(0, target_id)

            async with self._write_locks[target_id]:
                await self._call(
                    self.store.update(target_id, self.user_id, TaskUpdate.model_validate(changes))
                )
            saved = True
        except Exception as exc:
            raise self._fail("update", task_id, exc) from exc
        finally:
            self._settle_write(keys, changes, saved)
        self.last_error = None

    async def toggle_complete(self, task_id: str) -> None:
        task = self._require(task_id)
        if task.status == TaskStatus.done:
            fields = {"status": TaskStatus.todo, "completed_at": None}
        else:
            fields = {"status": TaskStatus.done, "completed_at": self._clock()}
        await self.update(task_id, fields)

    async def delete(self, task_id: str) -> None:
        previous = self._require(task_id)
        position = self._index(task_id)
        self._bases.setdefault(task_id, previous)
        self._remove(task_id)
        hidden = [task_id]
        self._pending_deletes.add(task_id)
        try:
            target_id = task_id
            if is_temporary_id(task_id) and task_id in self._pending_creates:
                created = await self._await_create(task_id)
                if created is None:
                    # The insert failed, so there is nothing to delete
                    return
                target_id = created.id
                hidden.append(target_id)
                self._pending_deletes.add(target_id)
                self._bases.setdefault(target_id, created)
                self._remove(target_id)

            async with self._write_locks[target_id]:
                await self._call(self.store.delete(target_id, self.user_id))
            self._write_locks.pop(target_id, None)
        except Exception as exc:
            # Writes that settled while the delete was pending are in the base
            if self._index(target_id) is None:
                self._tasks.insert(min(position, len(self._tasks)), self._replay(target_id))
            raise self._fail("delete", task_id, exc) from exc
        finally:
            self._pending_deletes.difference_update(hidden)
            for hidden_id in hidden:
                self._release(hidden_id)
        self.last_error = None

    # ------------------------------------------------------------------
    # Remote changes

    def apply_event(self, event: TaskEvent) -> None:
        """Merge one change-feed event. Applying the same event twice is a no-op."""
        if event.task is not None and event.task.user_id != self.user_id:
            logger.debug("Ignoring %s event for foreign task %s", event.type.value, event.task_id)
            return
        if event.type == TaskEventType.update and event.task_id in self._bases:
            self._bases[event.task_id] = event.task
        if event.task_id in self._pending_deletes:
            return

        if event.type == TaskEventType.insert:
            if self._index(event.task_id) is None:
                self._tasks.insert(0, event.task)
        elif event.type == TaskEventType.update:
            if event.task_id in self._writes:
                self._replace(self._replay(event.task_id))
            else:
                self._replace(event.task)
        elif event.type == TaskEventType.delete:
            self._remove(event.task_id)
        logger.debug("Absorbed %s event for %s", event.type.value, event.task_id)

    def _reconcile(self, rows: list[TaskResponse]) -> None:
        """Replace the local list with server rows, by id.

        Unconfirmed creates keep their local version, tasks with writes in
        flight get those writes replayed on the server row, and tasks being
        deleted stay hidden.
        """
        local = {task.id for task in self._tasks}
        merged = [task for task in self._tasks if task.id in self._pending_creates]
        seen: set[str] = set()
        for row in rows:
            if row.id in seen:
                continue
            seen.add(row.id)
            if row.id in self._bases:
                self._bases[row.id] = row
            if row.id in self._pending_deletes:
                continue
            if row.id in self._writes and row.id in local:
                merged.append(self._replay(row.id))
            else:
                merged.append(row)
        for task in self._tasks:
            if task.id not in seen and task.id not in self._pending_creates and task.id in self._writes:
                merged.append(task)
        self._tasks = merged

    async def refresh(self) -> None:
        """Fetch the full list from the store and reconcile it."""
        try:
            rows = await self._call(self.store.list_tasks(self.user_id))
        except Exception as exc:
            raise self._fail("load", None, exc) from exc
        self._reconcile(rows)
        self.last_error = None

    async def load(self) -> None:
        await self.refresh()
        logger.info("Loaded %d tasks for %s", len(self._tasks), self.user_id)

    # ------------------------------------------------------------------
    # Feed / polling lifecycle

    async def start(self) -> None:
        """Subscribe, load, then drain events queued during the load.

        Subscribing first means a change committed while the list is being
        fetched is still delivered; applying it after the load is harmless
        because events merge by id.
        """
        subscription = await self._subscribe()
        try:
            await self.load()
        except TaskSyncError as exc:
            logger.error("Initial load failed for %s: %s", self.user_id, exc)
        if subscription is not None:
            self._stream(subscription)
        else:
            self._enter_polling()

    async def stop(self) -> None:
        self.mode = SyncMode.idle
        if self._scheduler is not None:
            cancel_job(self._scheduler, self._poll_job_id)
            if self._owns_scheduler and self._scheduler.running:
                self._scheduler.shutdown(wait=False)
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        if self._consumer is not None:
            self._consumer.cancel()
            with suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None

    async def _subscribe(self) -> Optional[FeedSubscription]:
        """Open a subscription; its events queue up until ``_stream`` consumes them."""
        if self.feed is None:
            return None
        try:
            subscription = await self.feed.subscribe(self.user_id)
        except FeedUnavailableError as exc:
            logger.warning("Change feed unavailable for %s: %s", self.user_id, exc)
            return None
        self._subscription = subscription
        self.mode = SyncMode.streaming
        return subscription

    def _stream(self, subscription: FeedSubscription) -> None:
        if self._subscription is not subscription:
            # Closed by stop() before consumption began
            return
        self._consumer = asyncio.create_task(self._consume(subscription))
        logger.info("Streaming task changes for %s", self.user_id)

    async def _consume(self, subscription: FeedSubscription) -> None:
        try:
            async for event in subscription:
                self.apply_event(event)
        except FeedUnavailableError as exc:
            logger.warning("Change feed broke for %s: %s", self.user_id, exc)
        if self._subscription is subscription and self.mode == SyncMode.streaming:
            self._subscription = None
            self._consumer = None
            self._enter_polling()

    def _enter_polling(self) -> None:
        self.mode = SyncMode.polling
        if self._scheduler is None:
            self._scheduler = create_scheduler()
            self._owns_scheduler = True
        schedule_poll(self._scheduler, self._poll_job_id, self.poll, self.poll_interval)
        logger.warning(
            "Falling back to polling every %.1fs for %s", self.poll_interval, self.user_id
        )

    async def poll(self) -> None:
        """One polling tick: try to restore the feed, then refresh."""
        if self.mode != SyncMode.polling:
            return
        subscription = await self._subscribe()
        if subscription is not None:
            cancel_job(self._scheduler, self._poll_job_id)
        try:
            await self.refresh()
        except TaskSyncError as exc:
            logger.warning("Poll refresh failed for %s: %s", self.user_id, exc)
        if subscription is not None:
            self._stream(subscription)
