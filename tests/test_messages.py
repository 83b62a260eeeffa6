"""Tests for the YAML message templates."""
from __future__ import annotations

import random

import pytest

from vision_coach.messages import (
    TemplateError,
    batch_reminder_message,
    goal_checkin_email,
    habit_reminder_message,
    load_templates,
    outreach_message,
    push_title,
    streak_tier,
    voice_call_message,
)


@pytest.mark.parametrize(
    "streak,tier",
    [(0, "fresh_start"), (1, "building"), (6, "building"), (7, "established"), (29, "established"), (30, "mastered")],
)
def test_streak_tier(streak, tier):
    assert streak_tier(streak) == tier


def test_every_habit_template_renders():
    templates = load_templates()["habit_reminders"]
    for tier, options in templates.items():
        for index in range(len(options)):
            rng = random.Random()
            rng.choice = lambda seq, i=index: seq[i]
            streak = {"fresh_start": 0, "building": 3, "established": 14, "mastered": 60}[tier]
            message = habit_reminder_message("Stretch", streak, "Ada", rng)
            assert "{" not in message
            assert "Stretch" in message


def test_push_titles():
    assert push_title("weekly_review") == "📅 Weekly Review"
    assert push_title("generic") == "Visionary AI"


def test_outreach_and_voice_defaults():
    assert outreach_message("celebration", "ada").startswith("Congratulations ada!")
    assert outreach_message("unknown", "ada") == "Hi ada, this is your AI coach reaching out!"
    assert "Meditate" in voice_call_message("habit_reminder", {"habit_title": "Meditate"})
    assert "your goal" in voice_call_message("goal_checkin", None)


def test_batch_reminder_falls_back_to_motivation():
    message = batch_reminder_message("nonsense", "Ada", random.Random(0))

    assert message in [
        option.format(first_name="Ada")
        for option in load_templates()["batch_reminders"]["motivation"]
    ]


def test_goal_checkin_email_without_progress():
    subject, body = goal_checkin_email("Ada", "Learn Spanish", None)

    assert subject == "Goal Check-in: Learn Spanish"
    assert "0%" in body


def test_missing_template_file(tmp_path):
    with pytest.raises(TemplateError):
        load_templates(tmp_path / "missing.yml")
