"""Dashboard summary numbers derived from a task list."""

import math
from datetime import UTC, date, datetime
from typing import Any, Iterable, NamedTuple, Optional, Sequence

from taskstreak.models.task import TaskStatus
from taskstreak.services.streak_service import (
    Instant,
    date_key,
    filter_completed,
    prior_date_key,
    streak_for_tasks,
)

ACTIVITY_DAYS = 14
MILESTONE_STEP = 7


class Urgency(NamedTuple):
    label: str
    urgent: bool


class DayActivity(NamedTuple):
    date_key: str
    count: int


class ActivitySummary(NamedTuple):
    total_done: int
    active_days: int
    avg_per_active_day: float
    peak_day: Optional[DayActivity]


class TaskSummary(NamedTuple):
    streak: int
    completed_today: int
    done: int
    total: int
    percent_complete: int
    overdue: int
    urgent_task_ids: list[str]
    message: str
    next_milestone: int
    activity: list[DayActivity]


def _now(now: Optional[Instant]) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if isinstance(now, str):
        now = datetime.fromisoformat(now)
    return now.astimezone(UTC) if now.tzinfo is not None else now.replace(tzinfo=UTC)


def _is_done(task: Any) -> bool:
    return task.status == TaskStatus.done


def completed_on(tasks: Iterable[Any], day: str) -> int:
    """Number of done tasks whose completion falls on the given UTC day."""
    return sum(1 for completed_at in filter_completed(tasks) if date_key(completed_at) == day)


def progress(tasks: Sequence[Any]) -> tuple[int, int, int]:
    """Return (done, total, percent complete)."""
    total = len(tasks)
    done = sum(1 for t in tasks if _is_done(t))
    # Half rounds up
    percent = math.floor(done * 100 / total + 0.5) if total else 0
    return done, total, percent


def due_urgency(due_date: Optional[date], status: TaskStatus, now: Optional[Instant] = None) -> Urgency:
    """Label a due date by whole UTC calendar days left."""
    if due_date is None or status == TaskStatus.done:
        return Urgency("", False)
    days_left = (due_date - _now(now).date()).days
    if days_left < 0:
        return Urgency(f"{abs(days_left)}d overdue", True)
    if days_left == 0:
        return Urgency("Due today!", True)
    if days_left == 1:
        return Urgency("Due tomorrow", True)
    if days_left <= 3:
        return Urgency(f"{days_left}d left", False)
    return Urgency("", False)


def count_overdue(tasks: Iterable[Any], now: Optional[Instant] = None) -> int:
    # Due at the end of its UTC day, so overdue from the next day on
    today = _now(now).date()
    return sum(
        1
        for t in tasks
        if t.due_date is not None
        and not _is_done(t)
        and t.due_date < today
    )


def daily_activity(
    tasks: Iterable[Any], now: Optional[Instant] = None, days: int = ACTIVITY_DAYS
) -> list[DayActivity]:
    """Completions per UTC day for the last ``days`` days, oldest first."""
    today = date_key(_now(now))
    counts: dict[str, int] = {}
    for completed_at in filter_completed(tasks):
        key = date_key(completed_at)
        counts[key] = counts.get(key, 0) + 1
    keys = [prior_date_key(today, offset) for offset in range(days - 1, -1, -1)]
    return [DayActivity(key, counts.get(key, 0)) for key in keys]


def activity_summary(activity: Sequence[DayActivity]) -> ActivitySummary:
    total = sum(day.count for day in activity)
    active = sum(1 for day in activity if day.count > 0)
    avg = round(total / active, 1) if active else 0.0
    # Earliest day wins a tie
    peak = max(activity, key=lambda day: day.count) if activity else None
    return ActivitySummary(total, active, avg, peak)


def streak_message(streak: int, completed_today: int) -> str:
    if completed_today == 0:
        return "Complete a task to keep your streak alive!"
    if streak == 0:
        return "Start your streak today!"
    if streak == 1:
        return "First day, let's build momentum."
    if streak < 3:
        return "You're on a roll! Keep going."
    if streak < 7:
        return f"{streak} days strong. Don't break it now."
    if streak < 14:
        return "One week down. You're unstoppable."
    if streak < 30:
        return "Elite consistency. Stay locked in."
    return "Legendary streak. You're a machine."


def next_milestone(streak: int) -> int:
    """Next multiple of seven at or above the streak, never below seven."""
    return max(MILESTONE_STEP, math.ceil(streak / MILESTONE_STEP) * MILESTONE_STEP)


def summarize(tasks: Sequence[Any], now: Optional[Instant] = None) -> TaskSummary:
    current = _now(now)
    streak = streak_for_tasks(tasks, current)
    completed_today = completed_on(tasks, date_key(current))
    done, total, percent = progress(tasks)
    return TaskSummary(
        streak=streak,
        completed_today=completed_today,
        done=done,
        total=total,
        percent_complete=percent,
        overdue=count_overdue(tasks, current),
        urgent_task_ids=[t.id for t in tasks if due_urgency(t.due_date, t.status, current).urgent],
        message=streak_message(streak, completed_today),
        next_milestone=next_milestone(streak),
        activity=daily_activity(tasks, current),
    )
