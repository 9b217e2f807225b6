"""Unit tests for the daily completion streak."""
from datetime import UTC, datetime, timedelta, timezone

import pytest

from taskstreak.models.task import TaskStatus
from taskstreak.services.streak_service import (
    compute_streak,
    date_key,
    filter_completed,
    prior_date_key,
    streak_for_tasks,
)


def done(day: str) -> str:
    return f"{day}T10:00:00Z"


def noon(day: str) -> datetime:
    return datetime.fromisoformat(f"{day}T12:00:00+00:00")


# ---------------------------------------------------------------------------
# date_key / prior_date_key
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("instant,expected", [
    (datetime(2025, 1, 15, 23, 59, 59, tzinfo=UTC), "2025-01-15"),
    (datetime(2025, 3, 1, 0, 0, tzinfo=UTC), "2025-03-01"),
    ("2025-01-15T23:59:59Z", "2025-01-15"),
    # 01:30 at UTC+5 is still the previous UTC day
    (datetime(2025, 1, 16, 1, 30, tzinfo=timezone(timedelta(hours=5))), "2025-01-15"),
    # Naive values are already UTC
    (datetime(2025, 1, 15, 23, 0), "2025-01-15"),
])
def test_date_key_uses_utc_day(instant, expected):
    assert date_key(instant) == expected


def test_date_key_rejects_garbage():
    with pytest.raises(ValueError):
        date_key("not a timestamp")
    with pytest.raises(TypeError):
        date_key(1736942400)


@pytest.mark.parametrize("key,days,expected", [
    ("2025-01-15", 1, "2025-01-14"),
    ("2025-03-01", 1, "2025-02-28"),
    ("2024-03-01", 1, "2024-02-29"),
    ("2025-01-01", 1, "2024-12-31"),
    ("2025-06-10", 0, "2025-06-10"),
    ("2025-01-15", 30, "2024-12-16"),
])
def test_prior_date_key_calendar_arithmetic(key, days, expected):
    assert prior_date_key(key, days) == expected


# ---------------------------------------------------------------------------
# compute_streak
# ---------------------------------------------------------------------------


def test_empty_is_zero():
    assert compute_streak([], noon("2025-01-15")) == 0


def test_three_days_ending_today():
    instants = [done("2025-01-13"), done("2025-01-14"), done("2025-01-15")]
    assert compute_streak(instants, noon("2025-01-15")) == 3


def test_three_days_ending_yesterday_is_still_alive():
    instants = [done("2025-01-12"), done("2025-01-13"), done("2025-01-14")]
    assert compute_streak(instants, noon("2025-01-15")) == 3


def test_only_today_or_only_yesterday_is_one():
    assert compute_streak([done("2025-01-15")], noon("2025-01-15")) == 1
    assert compute_streak([done("2025-01-14")], noon("2025-01-15")) == 1


def test_gap_truncates_to_tail_run():
    instants = [done("2025-01-11"), done("2025-01-12"), done("2025-01-14"), done("2025-01-15")]
    assert compute_streak(instants, noon("2025-01-15")) == 2


def test_last_completion_two_days_ago_is_zero():
    assert compute_streak([done("2025-01-13")], noon("2025-01-15")) == 0
    assert compute_streak([done("2025-01-10"), done("2025-01-11")], noon("2025-01-15")) == 0


def test_future_completions_are_ignored():
    instants = [done("2025-01-15"), done("2025-01-16"), done("2025-01-17")]
    assert compute_streak(instants, noon("2025-01-15")) == 1
    # A future day alone must not rescue a broken streak either
    assert compute_streak([done("2025-01-16")], noon("2025-01-15")) == 0


def test_same_day_duplicates_collapse():
    single = [done("2025-01-14"), done("2025-01-15")]
    doubled = single + ["2025-01-14T18:30:00Z", "2025-01-15T00:00:01Z"]
    assert compute_streak(doubled, noon("2025-01-15")) == compute_streak(single, noon("2025-01-15")) == 2


def test_seven_day_run():
    today = noon("2025-01-15")
    instants = [today - timedelta(days=offset) for offset in range(7)]
    assert compute_streak(instants, today) == 7


def test_rollover_matches_plain_run():
    across = [done("2024-12-30"), done("2024-12-31"), done("2025-01-01"), done("2025-01-02")]
    plain = [done("2025-06-10"), done("2025-06-11"), done("2025-06-12"), done("2025-06-13")]
    assert compute_streak(across, noon("2025-01-02")) == 4
    assert compute_streak(plain, noon("2025-06-13")) == 4


def test_late_utc_evening_counts_for_that_day():
    instants = [done("2025-01-14"), "2025-01-15T23:59:59Z"]
    assert compute_streak(instants, "2025-01-15T23:59:59.500000+00:00") == 2


def test_now_defaults_to_current_time():
    assert compute_streak([datetime.now(UTC)]) == 1


# ---------------------------------------------------------------------------
# filter_completed / streak_for_tasks
# ---------------------------------------------------------------------------


def test_filter_completed_keeps_only_done_with_timestamp():
    tasks = [
        {"status": "done", "completed_at": "2025-01-15T10:00:00Z"},
        {"status": "todo", "completed_at": None},
        {"status": "done", "completed_at": None},
        {"status": TaskStatus.in_progress, "completed_at": "2025-01-15T10:00:00Z"},
    ]
    assert filter_completed(tasks) == ["2025-01-15T10:00:00Z"]


def test_streak_for_tasks_reads_models():
    tasks = [
        {"status": TaskStatus.done, "completed_at": noon("2025-01-14")},
        {"status": TaskStatus.done, "completed_at": noon("2025-01-15")},
        {"status": TaskStatus.todo, "completed_at": None},
    ]
    assert streak_for_tasks(tasks, noon("2025-01-15")) == 2
