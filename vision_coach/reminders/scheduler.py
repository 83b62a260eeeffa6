"""Daily habit reminder scheduling.

Runs once per day (or more often; it is idempotent per local day). For
every user with habit reminders and agent actions enabled it works out which
habits are due today in the user's timezone and enqueues one
``scheduled_habit_reminders`` record per habit that has neither a reminder
nor a completion yet today.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from ..comms.quiet_hours import resolve_timezone
from ..store import HABIT_COMPLETIONS, HABIT_REMINDERS, HABITS, RecordStore
from ..timeutil import to_iso, utc_now
from ..users import AgentSettings, UserDirectory
from .habits import (
    calculate_reminder_time,
    generate_reminder_message,
    is_habit_scheduled_for_day,
    js_weekday,
)

logger = logging.getLogger(__name__)


def local_day_bounds(day: date, tz_name: Optional[str]) -> Tuple[str, str]:
    """UTC ISO bounds ``[start, end)`` of a calendar day in the user's timezone."""
    tz = resolve_timezone(tz_name)
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return to_iso(start.astimezone(timezone.utc)), to_iso(end.astimezone(timezone.utc))


@dataclass(slots=True)
class ScheduleSummary:
    scheduled: int = 0
    skipped: int = 0
    users_processed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "scheduled": self.scheduled,
            "skipped": self.skipped,
            "users_processed": self.users_processed,
        }


class ReminderScheduler:
    def __init__(
        self,
        *,
        users: Optional[UserDirectory] = None,
        habits: Optional[RecordStore] = None,
        completions: Optional[RecordStore] = None,
        reminders: Optional[RecordStore] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.users = users or UserDirectory()
        self.habits = habits or RecordStore(HABITS)
        self.completions = completions or RecordStore(HABIT_COMPLETIONS)
        self.reminders = reminders or RecordStore(HABIT_REMINDERS)
        self.rng = rng

    def run(self, now: Optional[datetime] = None) -> ScheduleSummary:
        now = now or utc_now()
        summary = ScheduleSummary()
        candidates = self.users.users_with_habit_reminders()
        logger.info("Found %d users with habit reminders enabled", len(candidates))

        for settings in candidates:
            summary.users_processed += 1
            try:
                scheduled, skipped = self._schedule_user(settings, now)
            except Exception:
                logger.exception("Error scheduling reminders for user %s", settings.user_id)
                continue
            summary.scheduled += scheduled
            summary.skipped += skipped

        logger.info("Scheduled %d reminders, skipped %d", summary.scheduled, summary.skipped)
        return summary

    def _schedule_user(self, settings: AgentSettings, now: datetime) -> Tuple[int, int]:
        user_id = settings.user_id
        prefs = self.users.comm_preferences(user_id)
        tz_name = prefs.timezone
        today = now.astimezone(resolve_timezone(tz_name)).date()
        weekday = js_weekday(today)
        day_start, day_end = local_day_bounds(today, tz_name)

        habits = self.habits.query([("user_id", "==", user_id), ("is_active", "==", True)])
        first_name: Optional[str] = None
        scheduled = skipped = 0

        for habit in habits:
            if not is_habit_scheduled_for_day(habit, weekday):
                continue

            if self._has_record(self.reminders, "scheduled_for", habit["id"], day_start, day_end):
                skipped += 1
                continue
            if self._has_record(self.completions, "completed_at", habit["id"], day_start, day_end):
                skipped += 1
                continue

            remind_at = calculate_reminder_time(
                habit.get("reminder_time"),
                settings.habit_reminder_timing,
                settings.habit_reminder_minutes_before,
                tz_name,
                today,
            )
            if first_name is None:
                first_name = self.users.profile(user_id).first_name

            self.reminders.insert(
                {
                    "user_id": user_id,
                    "habit_id": habit["id"],
                    "scheduled_for": to_iso(remind_at),
                    "reminder_channel": settings.habit_reminder_channel or "push",
                    "habit_name": habit.get("title"),
                    "reminder_message": generate_reminder_message(habit, first_name, self.rng),
                    "status": "scheduled",
                    "created_at": to_iso(now),
                }
            )
            scheduled += 1

        return scheduled, skipped

    @staticmethod
    def _has_record(store: RecordStore, field: str, habit_id: str, start: str, end: str) -> bool:
        return (
            store.first(
                [
                    ("habit_id", "==", habit_id),
                    (field, ">=", start),
                    (field, "<", end),
                ]
            )
            is not None
        )
