"""Session wiring: logging setup and the synchronizer lifecycle for one user."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from taskstreak.config import get_settings
from taskstreak.services.change_feed import ChangeFeed, InProcessChangeFeed
from taskstreak.services.rest_store import RestTaskStore
from taskstreak.services.task_store import SqlTaskStore, TaskStore
from taskstreak.services.task_sync_service import TaskSynchronizer

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    )


def build_local_backend() -> tuple[SqlTaskStore, InProcessChangeFeed]:
    """SQL store on the configured database with an in-process change feed."""
    from taskstreak.database import AsyncSessionLocal

    feed = InProcessChangeFeed()
    return SqlTaskStore(AsyncSessionLocal, feed=feed), feed


def build_rest_backend(access_token: Optional[str] = None) -> RestTaskStore:
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
    return RestTaskStore(access_token=access_token)


@asynccontextmanager
async def open_session(
    user_id: str,
    store: TaskStore,
    feed: Optional[ChangeFeed] = None,
) -> AsyncIterator[TaskSynchronizer]:
    """Start a synchronizer for ``user_id`` and stop it on exit."""
    sync = TaskSynchronizer(user_id, store, feed)
    logger.info("Opening task session for %s", user_id)
    await sync.start()
    try:
        yield sync
    finally:
        await sync.stop()
        logger.info("Closed task session for %s", user_id)
