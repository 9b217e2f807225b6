"""End-to-end: synchronizer on the SQL store with its change feed echoing writes."""

from datetime import UTC, datetime

import pytest

from taskstreak.main import open_session
from taskstreak.models.task import TaskStatus
from taskstreak.services.change_feed import InProcessChangeFeed
from taskstreak.services.task_store import SqlTaskStore
from taskstreak.services.task_sync_service import SyncMode, TaskSynchronizer, is_temporary_id
from tests.factories import USER_ID
from tests.fakes import settle


@pytest.mark.asyncio
async def test_own_writes_echo_without_duplicates(session_factory):
    feed = InProcessChangeFeed()
    store = SqlTaskStore(session_factory, feed=feed)

    async with open_session(USER_ID, store, feed) as sync:
        assert sync.mode == SyncMode.streaming

        created = await sync.create({"title": "Write the report"})
        await settle()
        assert [t.id for t in sync.tasks] == [created.id]

        await sync.toggle_complete(created.id)
        await settle()
        task = sync.get(created.id)
        assert task.status == TaskStatus.done
        assert task.completed_at is not None
        assert sync.current_streak() == 1

        await sync.delete(created.id)
        await settle()
        assert sync.tasks == []

    assert sync.mode == SyncMode.idle
    assert feed.subscriber_count(USER_ID) == 0


@pytest.mark.asyncio
async def test_changes_from_another_session_arrive(session_factory):
    feed = InProcessChangeFeed()
    store = SqlTaskStore(session_factory, feed=feed)

    async with open_session(USER_ID, store, feed) as phone:
        laptop = TaskSynchronizer(USER_ID, store, feed)
        await laptop.start()

        created = await laptop.create({"title": "From the laptop"})
        await settle()
        assert [t.id for t in phone.tasks] == [created.id]
        assert not any(is_temporary_id(t.id) for t in phone.tasks)

        await laptop.toggle_complete(created.id)
        await settle()
        assert phone.get(created.id).status == TaskStatus.done
        assert phone.current_streak(datetime.now(UTC)) == 1

        await laptop.stop()


@pytest.mark.asyncio
async def test_third_session_over_quota_polls(session_factory):
    feed = InProcessChangeFeed(max_subscribers=2)
    store = SqlTaskStore(session_factory, feed=feed)

    async with open_session(USER_ID, store, feed) as first:
        async with open_session(USER_ID, store, feed) as second:
            async with open_session(USER_ID, store, feed) as third:
                assert first.mode == second.mode == SyncMode.streaming
                assert third.mode == SyncMode.polling

                created = await first.create({"title": "Shared"})
                await third.poll()
                assert third.get(created.id) is not None
