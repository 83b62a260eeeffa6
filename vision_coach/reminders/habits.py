"""Habit schedule rules and reminder timing."""
from __future__ import annotations

import random
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Mapping, Optional

from ..comms.quiet_hours import parse_clock, resolve_timezone
from ..messages import habit_reminder_message

DEFAULT_REMINDER_TIME = time(9, 0)
AFTER_MISS_DELAY = timedelta(minutes=30)


def js_weekday(day: date) -> int:
    """Weekday number with 0 = Sunday through 6 = Saturday."""
    return (day.weekday() + 1) % 7


def is_habit_scheduled_for_day(habit: Mapping[str, Any], weekday: int) -> bool:
    """Whether a habit is due on ``weekday`` (0 = Sunday)."""
    frequency = habit.get("frequency")
    if not frequency or frequency == "daily":
        return True
    if frequency in ("weekly", "custom"):
        custom_days = habit.get("custom_days")
        if isinstance(custom_days, list):
            return weekday in custom_days
        return frequency == "weekly"
    if frequency == "weekdays":
        return 1 <= weekday <= 5
    if frequency == "weekends":
        return weekday in (0, 6)
    return True


def calculate_reminder_time(
    reminder_time: Optional[str],
    timing: Optional[str],
    minutes_before: Optional[int],
    tz_name: Optional[str],
    day: date,
) -> datetime:
    """When to remind the user about a habit on ``day``, in UTC.

    The base is the habit's ``HH:MM[:SS]`` reminder time (09:00 when unset)
    in the user's timezone. ``before`` moves it earlier by ``minutes_before``,
    ``after_miss`` moves it 30 minutes later, ``at_time`` leaves it alone.
    """
    base_clock = parse_clock(reminder_time) if reminder_time else DEFAULT_REMINDER_TIME
    local = datetime.combine(day, base_clock, tzinfo=resolve_timezone(tz_name))

    if timing == "before" and minutes_before and minutes_before > 0:
        local -= timedelta(minutes=minutes_before)
    elif timing == "after_miss":
        local += AFTER_MISS_DELAY

    return local.astimezone(timezone.utc)


def generate_reminder_message(
    habit: Mapping[str, Any],
    first_name: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> str:
    streak = int(habit.get("current_streak") or 0)
    return habit_reminder_message(
        habit.get("title") or "your habit",
        streak,
        first_name or "there",
        rng,
    )
