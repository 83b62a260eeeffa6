"""Message templates loaded from ``templates/notifications.yml``."""
from __future__ import annotations

import random
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

TEMPLATES_PATH = Path(__file__).resolve().parent / "templates" / "notifications.yml"


class TemplateError(RuntimeError):
    """Raised when the template file is missing or malformed."""


class _Defaults(dict):
    """Mapping for str.format_map that leaves unknown placeholders blank."""

    def __missing__(self, key: str) -> str:
        return ""


@lru_cache(maxsize=4)
def load_templates(path: Optional[Path] = None) -> Dict[str, Any]:
    template_path = path or TEMPLATES_PATH
    if not template_path.exists():
        raise TemplateError(f"Template file not found at {template_path}")
    with template_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if not isinstance(data, dict):
        raise TemplateError(f"Template file {template_path} must contain a mapping")
    return data


def _section(name: str) -> Dict[str, Any]:
    return load_templates().get(name) or {}


def _choose(options: List[str], rng: Optional[random.Random]) -> str:
    return (rng or random).choice(options)


def push_title(message_type: str) -> str:
    titles = _section("push_titles")
    return titles.get(message_type) or titles["default"]


def streak_tier(streak: int) -> str:
    if streak <= 0:
        return "fresh_start"
    if streak < 7:
        return "building"
    if streak < 30:
        return "established"
    return "mastered"


def habit_reminder_message(
    habit_title: str,
    streak: int,
    first_name: str,
    rng: Optional[random.Random] = None,
) -> str:
    options = _section("habit_reminders")[streak_tier(streak)]
    return _choose(options, rng).format(
        first_name=first_name,
        habit=habit_title,
        streak=streak,
        next_day=streak + 1,
        weeks=streak // 7,
        months=streak // 30,
    )


def batch_reminder_message(
    reminder_type: Optional[str],
    first_name: str,
    rng: Optional[random.Random] = None,
) -> str:
    section = _section("batch_reminders")
    options = section.get(reminder_type or "") or section["motivation"]
    return _choose(options, rng).format(first_name=first_name)


def outreach_message(outreach_type: Optional[str], name: str) -> str:
    section = _section("outreach")
    template = section.get(outreach_type or "") or section["default"]
    return template.format(name=name)


def voice_call_message(call_type: Optional[str], context: Optional[Mapping[str, Any]] = None) -> str:
    context = context if isinstance(context, Mapping) else {}
    section = _section("voice_calls")
    template = section.get(call_type or "") or section["default"]
    return template.format(
        habit_title=context.get("habit_title") or "your habit",
        goal_title=context.get("goal_title") or "your goal",
    )


def render_notification(template: Optional[str], data: Optional[Mapping[str, Any]] = None) -> str:
    """Render an event notification; unknown templates use ``generic``."""
    section = _section("notifications")
    values = _Defaults(_section("notification_defaults"))
    for key, value in (data or {}).items():
        if value is not None:
            values[key] = value
    body = section.get(template or "") or section["generic"]
    return body.format_map(values)


def habit_reminder_subject(habit_name: str) -> str:
    return _section("emails")["habit_reminder_subject"].format(habit=habit_name)


def goal_checkin_email(first_name: str, goal_title: str, progress: Any) -> Tuple[str, str]:
    """Subject and body of a goal check-in email."""
    emails = _section("emails")
    subject = emails["goal_checkin_subject"].format(goal=goal_title)
    body = emails["goal_checkin_body"].format(
        first_name=first_name,
        goal=goal_title,
        progress=progress if progress is not None else 0,
    )
    return subject, body
