"""Tests for the every-minute scheduled reminder dispatcher."""
from __future__ import annotations

import random
from datetime import datetime, timezone

import pytest

from vision_coach.reminders import ReminderDispatcher
from vision_coach.reminders.batch import clamp_batch_size
from vision_coach.store import SCHEDULED_REMINDERS, RecordStore

from conftest import FakeGateway

NOW = datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def reminders(store_dir):
    return RecordStore(SCHEDULED_REMINDERS)


@pytest.fixture
def dispatcher(gateway, users):
    return ReminderDispatcher(gateway=gateway, users=users, rng=random.Random(3))


def add(reminders, record_id, *, channel="sms", scheduled_for="2026-01-05T13:00:00+00:00", **extra):
    reminders.insert(
        {
            "user_id": "user-1",
            "channel": channel,
            "status": "pending",
            "scheduled_for": scheduled_for,
            **extra,
        },
        record_id=record_id,
    )


@pytest.mark.parametrize(
    "requested,expected",
    [(None, 50), (0, 50), (-5, 50), (10, 10), (100, 100), (500, 100)],
)
def test_clamp_batch_size(requested, expected):
    assert clamp_batch_size(requested) == expected


class TestReminderDispatcher:
    def test_nothing_pending(self, dispatcher, store_dir):
        body = dispatcher.run(now=NOW).to_dict()

        assert body["processed"] == 0
        assert body["message"] == "No pending reminders to process"

    def test_sends_sms_with_first_name(self, dispatcher, reminders, gateway, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        add(reminders, "r1", message="Good morning {firstName}!")

        summary = dispatcher.run(now=NOW)

        assert summary.sent == 1
        assert gateway.sms == [{"to": "+15551234567", "body": "Good morning Ada!"}]
        stored = reminders.get("r1")
        assert stored["status"] == "sent"
        assert stored["sent_at"]
        assert stored["error_message"] is None

    def test_default_message_by_type(self, dispatcher, reminders, gateway, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        add(reminders, "r1", reminder_type="streak")

        dispatcher.run(now=NOW)

        assert "Ada" in gateway.sms[0]["body"]

    def test_future_reminders_wait(self, dispatcher, reminders, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        add(reminders, "r1", scheduled_for="2026-01-05T15:00:00+00:00")

        assert dispatcher.run(now=NOW).processed == 0
        assert reminders.get("r1")["status"] == "pending"

    def test_oldest_first_within_batch(self, dispatcher, reminders, gateway, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        add(reminders, "late", scheduled_for="2026-01-05T13:30:00+00:00", message="late")
        add(reminders, "early", scheduled_for="2026-01-05T12:00:00+00:00", message="early")

        summary = dispatcher.run(batch_size=1, now=NOW)

        assert summary.processed == 1
        assert gateway.sms[0]["body"] == "early"
        assert reminders.get("late")["status"] == "pending"

    def test_dry_run_sends_nothing(self, dispatcher, reminders, gateway, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        add(reminders, "r1")

        summary = dispatcher.run(dry_run=True, now=NOW)

        assert summary.sent == 1
        assert gateway.sms == []
        assert reminders.get("r1")["status"] == "sent"

    def test_sms_disabled(self, dispatcher, reminders, seed_user):
        seed_user(prefs={"phone_number": "5551234567", "sms_enabled": False})
        add(reminders, "r1")

        summary = dispatcher.run(now=NOW)

        assert summary.failed == 1
        assert summary.errors == ["r1: User has SMS disabled"]

    @pytest.mark.parametrize(
        "channel,error",
        [
            ("push", "Push notifications not yet implemented"),
            ("email", "Email notifications not yet implemented"),
            ("pigeon", "No valid communication channel available"),
        ],
    )
    def test_unsupported_channels(self, dispatcher, reminders, seed_user, channel, error):
        seed_user()
        add(reminders, "r1", channel=channel)

        dispatcher.run(now=NOW)

        stored = reminders.get("r1")
        assert stored["status"] == "failed"
        assert stored["error_message"] == error

    def test_sms_without_twilio_has_no_channel(self, users, reminders, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        add(reminders, "r1")
        dispatcher = ReminderDispatcher(gateway=FakeGateway(configured=False), users=users)

        dispatcher.run(now=NOW)

        assert reminders.get("r1")["error_message"] == "No valid communication channel available"

    def test_gateway_error_is_counted(self, users, reminders, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        add(reminders, "r1")
        dispatcher = ReminderDispatcher(gateway=FakeGateway(fail=True), users=users)

        summary = dispatcher.run(now=NOW)

        assert summary.failed == 1
        assert summary.errors[0].startswith("r1: ")
        assert reminders.get("r1")["status"] == "failed"
