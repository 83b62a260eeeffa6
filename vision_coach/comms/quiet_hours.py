"""Quiet-hours windows evaluated in the user's local time."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any, Mapping, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import DEFAULT_TIMEZONE, default_timezone_name
from ..timeutil import utc_now

logger = logging.getLogger(__name__)

DEFAULT_QUIET_START = "22:00"
DEFAULT_QUIET_END = "07:00"


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Return the ZoneInfo for ``name``.

    Unknown or empty names use ``VC_DEFAULT_TIMEZONE``, then America/New_York.
    """
    for candidate in (name, default_timezone_name()):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r", candidate)
    return ZoneInfo(DEFAULT_TIMEZONE)


def parse_clock(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a time (seconds are dropped)."""
    parts = str(value).strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid clock time: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    return time(hour=hour, minute=minute)


@dataclass(slots=True, frozen=True)
class QuietHours:
    start: str = DEFAULT_QUIET_START
    end: str = DEFAULT_QUIET_END

    @classmethod
    def from_value(cls, value: Union["QuietHours", Mapping[str, Any], None]) -> Optional["QuietHours"]:
        """Build from the stored ``{start, end}`` dict; None means no window.

        Missing bounds (including an empty dict) take the 22:00-07:00 defaults.
        """
        if value is None or isinstance(value, QuietHours):
            return value
        if not isinstance(value, Mapping):
            logger.warning("Ignoring malformed quiet hours %r", value)
            return None
        return cls(
            start=value.get("start") or DEFAULT_QUIET_START,
            end=value.get("end") or DEFAULT_QUIET_END,
        )

    @property
    def start_minute(self) -> int:
        start = parse_clock(self.start)
        return start.hour * 60 + start.minute

    @property
    def end_minute(self) -> int:
        end = parse_clock(self.end)
        return end.hour * 60 + end.minute

    def contains(self, minute_of_day: int) -> bool:
        try:
            start, end = self.start_minute, self.end_minute
        except ValueError:
            logger.warning("Ignoring malformed quiet hours %r-%r", self.start, self.end)
            return False
        if start == end:
            return False
        if start > end:
            # Spans midnight, e.g. 22:00 to 07:00
            return minute_of_day >= start or minute_of_day < end
        return start <= minute_of_day < end

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}


def _local_now(now: Optional[datetime], tz_name: Optional[str]) -> datetime:
    current = now or utc_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(resolve_timezone(tz_name))


def is_in_quiet_hours(
    quiet_hours: Union[QuietHours, Mapping[str, Any], None],
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> bool:
    window = QuietHours.from_value(quiet_hours)
    if window is None:
        return False
    local = _local_now(now, tz_name)
    return window.contains(local.hour * 60 + local.minute)


def next_available_time(
    quiet_hours: Union[QuietHours, Mapping[str, Any], None],
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> datetime:
    """Next local occurrence of the window end, as a UTC datetime."""
    window = QuietHours.from_value(quiet_hours) or QuietHours()
    local = _local_now(now, tz_name)
    end = parse_clock(window.end)
    candidate = datetime.combine(local.date(), end, tzinfo=local.tzinfo)
    if candidate < local:
        candidate = datetime.combine(local.date() + timedelta(days=1), end, tzinfo=local.tzinfo)
    return candidate.astimezone(timezone.utc)
