"""Tests for the in-process change feed hub."""

import pytest

from taskstreak.schemas.task import TaskEvent, TaskEventType
from taskstreak.services.change_feed import InProcessChangeFeed
from taskstreak.services.errors import FeedUnavailableError
from tests.factories import OTHER_USER_ID, USER_ID, make_task


@pytest.mark.asyncio
async def test_publish_reaches_only_that_users_subscribers():
    feed = InProcessChangeFeed(max_subscribers=2)
    mine = await feed.subscribe(USER_ID)
    theirs = await feed.subscribe(OTHER_USER_ID)

    feed.publish(USER_ID, TaskEvent.inserted(make_task("a")))
    feed.publish(USER_ID, TaskEvent.deleted("a"))

    first = await mine.__anext__()
    second = await mine.__anext__()
    assert (first.type, first.task_id) == (TaskEventType.insert, "a")
    assert (second.type, second.task_id) == (TaskEventType.delete, "a")
    assert theirs._queue.empty()


@pytest.mark.asyncio
async def test_subscriber_quota():
    feed = InProcessChangeFeed(max_subscribers=1)
    first = await feed.subscribe(USER_ID)
    with pytest.raises(FeedUnavailableError):
        await feed.subscribe(USER_ID)

    await first.close()
    assert feed.subscriber_count(USER_ID) == 0
    await feed.subscribe(USER_ID)


@pytest.mark.asyncio
async def test_offline_feed_refuses_subscriptions():
    feed = InProcessChangeFeed()
    feed.available = False
    with pytest.raises(FeedUnavailableError):
        await feed.subscribe(USER_ID)


@pytest.mark.asyncio
async def test_fail_breaks_iteration():
    feed = InProcessChangeFeed()
    subscription = await feed.subscribe(USER_ID)
    feed.publish(USER_ID, TaskEvent.inserted(make_task("a")))
    feed.fail(USER_ID, "quota exceeded")

    received = []
    with pytest.raises(FeedUnavailableError, match="quota exceeded"):
        async for event in subscription:
            received.append(event.task_id)
    assert received == ["a"]
    assert feed.subscriber_count(USER_ID) == 0


@pytest.mark.asyncio
async def test_close_ends_iteration():
    feed = InProcessChangeFeed()
    subscription = await feed.subscribe(USER_ID)
    await subscription.close()
    events = [event async for event in subscription]
    assert events == []


def test_event_payload_must_match():
    with pytest.raises(ValueError):
        TaskEvent(type=TaskEventType.insert, task_id="a")
    with pytest.raises(ValueError):
        TaskEvent(type=TaskEventType.update, task_id="b", task=make_task("a"))
