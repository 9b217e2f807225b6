"""Change feed: per-user stream of task insert/update/delete events.

Delivery is at-least-once. Subscribers must absorb duplicates and tolerate
reordering across task ids.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Optional, Protocol, Union

from taskstreak.config import get_settings
from taskstreak.schemas.task import TaskEvent
from taskstreak.services.errors import FeedUnavailableError

logger = logging.getLogger(__name__)

_CLOSED = object()


class FeedSubscription:
    """Async iterator over the events of one user.

    Iteration ends when the subscription is closed and raises
    FeedUnavailableError when the feed breaks underneath it.
    """

    def __init__(self, feed: "InProcessChangeFeed", user_id: str):
        self.user_id = user_id
        self._feed = feed
        self._queue: asyncio.Queue[Union[TaskEvent, Exception, object]] = asyncio.Queue()
        self.closed = False

    def _deliver(self, item: Union[TaskEvent, Exception, object]) -> None:
        if not self.closed:
            self._queue.put_nowait(item)

    async def close(self) -> None:
        if self.closed:
            return
        self._queue.put_nowait(_CLOSED)
        self.closed = True
        self._feed._detach(self)

    def __aiter__(self) -> "FeedSubscription":
        return self

    async def __anext__(self) -> TaskEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class ChangeFeed(Protocol):
    async def subscribe(self, user_id: str) -> FeedSubscription: ...


class InProcessChangeFeed:
    """Fan-out hub fed by SqlTaskStore after each committed write.

    Each user may hold at most ``max_subscribers`` live subscriptions, the same
    way the hosted realtime service caps concurrent connections.
    """

    def __init__(self, max_subscribers: Optional[int] = None):
        self.max_subscribers = (
            max_subscribers if max_subscribers is not None else get_settings().FEED_MAX_SUBSCRIBERS
        )
        self.available = True
        self._subscribers: dict[str, list[FeedSubscription]] = defaultdict(list)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, []))

    async def subscribe(self, user_id: str) -> FeedSubscription:
        if not self.available:
            raise FeedUnavailableError("change feed is offline")
        if self.subscriber_count(user_id) >= self.max_subscribers:
            raise FeedUnavailableError(
                f"subscriber limit reached for user {user_id} ({self.max_subscribers})"
            )
        subscription = FeedSubscription(self, user_id)
        self._subscribers[user_id].append(subscription)
        logger.debug("Feed subscription opened for %s", user_id)
        return subscription

    def publish(self, user_id: str, event: TaskEvent) -> None:
        for subscription in list(self._subscribers.get(user_id, [])):
            subscription._deliver(event)

    def fail(self, user_id: str, reason: str = "channel error") -> None:
        """Break every live subscription of the user."""
        subscriptions = self._subscribers.pop(user_id, [])
        for subscription in subscriptions:
            subscription._deliver(FeedUnavailableError(reason))
            subscription.closed = True
        if subscriptions:
            logger.warning("Feed failed for %s: %s", user_id, reason)

    def _detach(self, subscription: FeedSubscription) -> None:
        subscriptions = self._subscribers.get(subscription.user_id)
        if subscriptions and subscription in subscriptions:
            subscriptions.remove(subscription)
            if not subscriptions:
                del self._subscribers[subscription.user_id]
