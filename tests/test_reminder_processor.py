"""Tests for delivering due habit reminders and goal check-ins."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from vision_coach.comms.sms import AgentSmsService
from vision_coach.comms.voice import AgentVoiceService
from vision_coach.logs import fetch_action_history
from vision_coach.reminders import ReminderProcessor
from vision_coach.store import GOAL_CHECKINS, HABIT_COMPLETIONS, HABIT_REMINDERS, RecordStore

from conftest import FakeEmailSender, FakeGateway

NOW = datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)  # 09:00 New York
DUE = "2026-01-05T13:30:00+00:00"
LATER = "2026-01-05T18:00:00+00:00"


def build_processor(users, gateway=None, email_sender=None):
    gateway = gateway or FakeGateway()
    return ReminderProcessor(
        users=users,
        sms=AgentSmsService(gateway=gateway, users=users),
        voice=AgentVoiceService(gateway=gateway, users=users),
        email_sender=email_sender or FakeEmailSender(),
    )


@pytest.fixture
def reminders(store_dir):
    return RecordStore(HABIT_REMINDERS)


def add_reminder(reminders, record_id, channel, scheduled_for=DUE, user_id="user-1"):
    return reminders.insert(
        {
            "user_id": user_id,
            "habit_id": f"habit-{record_id}",
            "habit_name": "Stretch",
            "reminder_channel": channel,
            "reminder_message": "Time to stretch, Ada!",
            "scheduled_for": scheduled_for,
            "status": "scheduled",
        },
        record_id=record_id,
    )


class TestHabitReminderDelivery:
    def test_email_reminder_sent_and_logged(self, users, reminders, seed_user, email_sender):
        seed_user(settings={"agent_actions_enabled": True})
        add_reminder(reminders, "r1", "email")
        add_reminder(reminders, "r2", "email", scheduled_for=LATER)

        summary = build_processor(users, email_sender=email_sender).run(NOW)

        assert summary.to_dict()["habit_reminders"] == {"sent": 1, "failed": 0, "skipped": 0}
        assert email_sender.sent == [
            {"to": "ada@example.com", "subject": "Reminder: Stretch", "body": "Time to stretch, Ada!"}
        ]
        assert reminders.get("r1")["status"] == "sent"
        assert reminders.get("r2")["status"] == "scheduled"
        entry = fetch_action_history("user-1")[0]
        assert entry["trigger_context"] == "habit_reminder"
        assert entry["related_habit_id"] == "habit-r1"

    def test_completed_habit_is_skipped(self, users, reminders, seed_user, email_sender):
        seed_user(settings={"agent_actions_enabled": True})
        add_reminder(reminders, "r1", "email")
        RecordStore(HABIT_COMPLETIONS).insert(
            {"habit_id": "habit-r1", "user_id": "user-1", "completed_at": "2026-01-05T12:00:00+00:00"}
        )

        summary = build_processor(users, email_sender=email_sender).run(NOW)

        assert summary.skipped == 1
        assert email_sender.sent == []
        assert reminders.get("r1")["status"] == "skipped"

    def test_agent_disabled_is_skipped(self, users, reminders, seed_user):
        seed_user(settings={"agent_actions_enabled": False})
        add_reminder(reminders, "r1", "email")

        summary = build_processor(users).run(NOW)

        assert summary.skipped == 1

    def test_sms_requires_explicit_permission(self, users, reminders, seed_user):
        seed_user(settings={"agent_actions_enabled": True}, prefs={"phone_number": "5551234567"})
        add_reminder(reminders, "r1", "sms")

        summary = build_processor(users).run(NOW)

        assert summary.failed == 1
        assert reminders.get("r1")["error_message"] == "SMS disabled"

    def test_sms_sent_when_allowed(self, users, reminders, seed_user, gateway):
        seed_user(
            settings={"agent_actions_enabled": True, "allow_send_sms": True},
            prefs={"phone_number": "5551234567"},
        )
        add_reminder(reminders, "r1", "sms")

        summary = build_processor(users, gateway=gateway).run(NOW)

        assert summary.sent == 1
        assert gateway.sms[0]["body"] == "Time to stretch, Ada!"

    def test_voice_reminder(self, users, reminders, seed_user, gateway):
        seed_user(
            settings={"agent_actions_enabled": True, "allow_voice_calls": True},
            prefs={"phone_number": "5551234567", "call_enabled": True},
        )
        add_reminder(reminders, "r1", "voice")

        summary = build_processor(users, gateway=gateway).run(NOW)

        assert summary.sent == 1
        assert gateway.calls[0]["message"] == "Time to stretch, Ada!"

    def test_push_falls_back_to_email(self, users, reminders, seed_user, email_sender):
        seed_user(settings={"agent_actions_enabled": True})
        add_reminder(reminders, "r1", "push")

        build_processor(users, email_sender=email_sender).run(NOW)

        assert len(email_sender.sent) == 1

    def test_push_without_email_permission_is_simulated(self, users, reminders, seed_user, email_sender):
        seed_user(settings={"agent_actions_enabled": True, "allow_send_email": False})
        add_reminder(reminders, "r1", "push")

        summary = build_processor(users, email_sender=email_sender).run(NOW)

        assert summary.sent == 1
        assert email_sender.sent == []

    def test_delivery_error_marks_failed(self, users, reminders, seed_user):
        seed_user(
            settings={"agent_actions_enabled": True, "allow_send_sms": True},
            prefs={"phone_number": "5551234567"},
        )
        add_reminder(reminders, "r1", "sms")

        summary = build_processor(users, gateway=FakeGateway(fail=True)).run(NOW)

        assert summary.failed == 1
        assert reminders.get("r1")["status"] == "failed"
        assert "r1" in summary.errors


class TestGoalCheckins:
    @pytest.fixture
    def checkins(self, store_dir):
        return RecordStore(GOAL_CHECKINS)

    def test_sends_goal_email(self, users, checkins, seed_user, email_sender):
        seed_user(settings={"agent_actions_enabled": True})
        checkins.insert(
            {
                "user_id": "user-1",
                "goal_id": "g1",
                "goal_title": "Run a marathon",
                "current_progress": 40,
                "scheduled_for": DUE,
                "status": "scheduled",
            },
            record_id="c1",
        )

        summary = build_processor(users, email_sender=email_sender).run(NOW)

        assert summary.to_dict()["goal_checkins"] == {"sent": 1, "failed": 0}
        message = email_sender.sent[0]
        assert message["subject"] == "Goal Check-in: Run a marathon"
        assert "Hi Ada" in message["body"]
        assert "40%" in message["body"]
        assert checkins.get("c1")["status"] == "sent"
        assert fetch_action_history("user-1")[0]["trigger_context"] == "goal_checkin"

    def test_missing_email_fails(self, users, checkins, seed_user):
        seed_user(settings={"agent_actions_enabled": True}, profile={"full_name": "Ada"})
        checkins.insert(
            {"user_id": "user-1", "scheduled_for": DUE, "status": "scheduled"}, record_id="c1"
        )

        summary = build_processor(users).run(NOW)

        assert summary.goal_failed == 1
        assert checkins.get("c1")["status"] == "failed"

    def test_agent_disabled_skips(self, users, checkins, seed_user, email_sender):
        seed_user(settings={"agent_actions_enabled": False})
        checkins.insert(
            {"user_id": "user-1", "scheduled_for": DUE, "status": "scheduled"}, record_id="c1"
        )

        build_processor(users, email_sender=email_sender).run(NOW)

        assert checkins.get("c1")["status"] == "skipped"
        assert email_sender.sent == []
