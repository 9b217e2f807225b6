"""Daily completion streak.

A streak day is any UTC calendar day with at least one completed task. The
streak counts consecutive streak days ending today, or ending yesterday when
today has no completion yet, so it only breaks once a whole day has passed
without one.

Day boundaries are always UTC, whatever the user's locale. Switching to local
time would change every stored streak and is a compatibility break.
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any, Optional, Union

from taskstreak.models.task import TaskStatus

Instant = Union[datetime, str]


def _to_datetime(instant: Instant) -> datetime:
    if isinstance(instant, datetime):
        return instant
    if isinstance(instant, str):
        # Raises ValueError on garbage; callers must pass real timestamps
        return datetime.fromisoformat(instant.strip())
    raise TypeError(f"Expected datetime or ISO-8601 string, got {type(instant).__name__}")


def date_key(instant: Instant) -> str:
    """Format an instant as its UTC calendar day, ``YYYY-MM-DD``.

    Naive datetimes are taken to be UTC already.
    """
    dt = _to_datetime(instant)
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.date().isoformat()


def prior_date_key(key: str, days: int) -> str:
    """Return the day ``days`` days before ``key``."""
    return (date.fromisoformat(key) - timedelta(days=days)).isoformat()


def compute_streak(completions: Iterable[Instant], now: Optional[Instant] = None) -> int:
    """Count consecutive completion days ending at today or yesterday (UTC).

    Args:
        completions: completion instants; duplicates on one day count once.
        now: reference instant, defaults to the current time.

    Completions on days after ``now`` are ignored.
    """
    today = date_key(now if now is not None else datetime.now(UTC))

    # ISO day keys sort chronologically, so string comparison is safe
    days = {key for key in map(date_key, completions) if key <= today}
    if not days:
        return 0

    yesterday = prior_date_key(today, 1)
    if today in days:
        anchor = today
    elif yesterday in days:
        anchor = yesterday
    else:
        return 0

    streak = 0
    cursor = anchor
    while cursor in days:
        streak += 1
        cursor = prior_date_key(cursor, 1)
    return streak


def _field(task: Any, name: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def filter_completed(tasks: Iterable[Any]) -> list[Instant]:
    """Completion instants of tasks that are done and carry a timestamp."""
    completed = []
    for task in tasks:
        completed_at = _field(task, "completed_at")
        if _field(task, "status") == TaskStatus.done and completed_at is not None:
            completed.append(completed_at)
    return completed


def streak_for_tasks(tasks: Iterable[Any], now: Optional[Instant] = None) -> int:
    return compute_streak(filter_completed(tasks), now)
