from datetime import datetime, timedelta, timezone

import pytest

from vision_coach.actions import ActionExecutor, PendingActionService, categorize_rejection
from vision_coach.actions.executor import ACTION_STEPS
from vision_coach.comms.sms import AgentSmsService
from vision_coach.comms.voice import AgentVoiceService
from vision_coach.errors import AgentError
from vision_coach.logs import fetch_action_history
from vision_coach.store import ACTION_FEEDBACK, PENDING_ACTIONS, RecordStore

from conftest import FakeGateway

CREATED = datetime(2026, 1, 5, 14, 0, tzinfo=timezone.utc)


def _service(users, gateway, email_sender) -> PendingActionService:
    executor = ActionExecutor(
        sms=AgentSmsService(gateway=gateway, users=users),
        voice=AgentVoiceService(gateway=gateway, users=users),
        email_sender=email_sender,
    )
    return PendingActionService(executor=executor)


@pytest.fixture
def service(users, gateway, email_sender):
    return _service(users, gateway, email_sender)


def test_categorize_rejection():
    assert categorize_rejection(None) == "unspecified"
    assert categorize_rejection("Not now, I'm busy") == "timing"
    assert categorize_rejection("That's the WRONG person") == "incorrect_action"
    assert categorize_rejection("I'd rather do it myself") == "prefer_manual"
    assert categorize_rejection("too sensitive") == "privacy"
    assert categorize_rejection("meh") == "other"


def test_create_pending_action_expires_in_a_day(service):
    action = service.create_pending_action(
        "user-1", "send_email", {"to": "bob@example.com"}, risk_level="medium", now=CREATED
    )

    assert action["status"] == "pending"
    assert action["expires_at"] == "2026-01-06T14:00:00+00:00"
    assert RecordStore(PENDING_ACTIONS).get(action["id"])["risk_level"] == "medium"


class TestConfirmAction:
    def test_executes_email_and_records_feedback(self, service, email_sender):
        action = service.create_pending_action(
            "user-1",
            "send_email",
            {"to": "bob@example.com", "subject": "Hello", "body": "Hi Bob"},
            confidence_score=0.9,
            now=CREATED,
        )

        result = service.confirm_action(
            "user-1",
            action["id"],
            {"rating": 5, "comment": "nice"},
            now=CREATED + timedelta(seconds=30),
        )

        assert result["success"] is True
        assert result["message"] == "Action executed: send email"
        assert email_sender.sent[0]["to"] == "bob@example.com"
        stored = RecordStore(PENDING_ACTIONS).get(action["id"])
        assert stored["status"] == "executed"
        assert stored["execution_result"]["message_id"] == "msg-1"
        feedback = RecordStore(ACTION_FEEDBACK).first()
        assert feedback["feedback_type"] == "confirmation"
        assert feedback["rating"] == 5
        assert feedback["time_to_decision_ms"] == 30000
        entry = fetch_action_history("user-1")[0]
        assert entry["trigger_context"] == "confirmation"
        assert entry["confidence_score"] == 0.9

    def test_sms_action(self, service, gateway, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        action = service.create_pending_action("user-1", "send_sms", {"message": "On my way"})

        result = service.confirm_action("user-1", action["id"])

        assert result["status"] == "executed"
        assert gateway.sms == [{"to": "+15551234567", "body": "On my way"}]

    def test_calendar_event_becomes_action_step(self, service):
        action = service.create_pending_action(
            "user-1",
            "create_calendar_event",
            {"title": "Review plan", "start_time": "2026-01-07T15:00:00Z"},
        )

        result = service.confirm_action("user-1", action["id"])

        step = RecordStore(ACTION_STEPS).get(result["result"]["task_id"])
        assert step["due_date"] == "2026-01-07"
        assert step["metadata"]["calendar_event"] is True

    def test_unknown_type_fails_without_raising(self, service):
        action = service.create_pending_action("user-1", "launch_rocket")

        result = service.confirm_action("user-1", action["id"])

        assert result["success"] is False
        assert result["error"] == "Unknown action type: launch_rocket"
        assert RecordStore(PENDING_ACTIONS).get(action["id"])["status"] == "failed"

    def test_missing_recipient(self, service):
        action = service.create_pending_action("user-1", "send_email_to_contact", {"subject": "x"})

        result = service.confirm_action("user-1", action["id"])

        assert result["error"] == "No recipient address"

    def test_expired(self, service):
        action = service.create_pending_action("user-1", "send_email", {"to": "a@b.c"}, now=CREATED)

        with pytest.raises(AgentError) as excinfo:
            service.confirm_action("user-1", action["id"], now=CREATED + timedelta(hours=25))

        assert excinfo.value.code == "ACTION_EXPIRED"
        assert RecordStore(PENDING_ACTIONS).get(action["id"])["status"] == "expired"

    def test_already_processed(self, service):
        action = service.create_pending_action("user-1", "send_email", {"to": "a@b.c"})
        service.confirm_action("user-1", action["id"])

        with pytest.raises(AgentError) as excinfo:
            service.confirm_action("user-1", action["id"])

        assert excinfo.value.code == "ACTION_ALREADY_PROCESSED"
        assert excinfo.value.context["status"] == "executed"

    def test_other_users_action_is_not_found(self, service):
        action = service.create_pending_action("user-1", "send_email", {"to": "a@b.c"})

        with pytest.raises(AgentError) as excinfo:
            service.confirm_action("user-2", action["id"])

        assert excinfo.value.code == "RESOURCE_NOT_FOUND"

    def test_executor_error_marks_failed(self, users, email_sender, seed_user):
        seed_user(prefs={"phone_number": "5551234567"})
        service = _service(users, FakeGateway(fail=True), email_sender)
        action = service.create_pending_action("user-1", "send_sms", {"message": "hi"})

        with pytest.raises(AgentError) as excinfo:
            service.confirm_action("user-1", action["id"])

        assert excinfo.value.code == "EXECUTION_FAILED"
        assert RecordStore(PENDING_ACTIONS).get(action["id"])["status"] == "failed"


class TestCancelAction:
    def test_cancel_with_reason(self, service, email_sender):
        action = service.create_pending_action("user-1", "send_email", {"to": "a@b.c"}, now=CREATED)

        result = service.cancel_action(
            "user-1", action["id"], "Not now", now=CREATED + timedelta(minutes=1)
        )

        assert result == {
            "success": True,
            "message": "Action cancelled: send email",
            "action_type": "send_email",
            "rejection_reason": "timing",
        }
        assert email_sender.sent == []
        stored = RecordStore(PENDING_ACTIONS).get(action["id"])
        assert stored["status"] == "cancelled"
        assert stored["cancellation_reason"] == "Not now"
        feedback = RecordStore(ACTION_FEEDBACK).first()
        assert feedback["feedback_type"] == "rejection"
        assert feedback["comment"] == "Not now"
        assert feedback["time_to_decision_ms"] == 60000
        assert fetch_action_history("user-1")[0]["action_status"] == "cancelled"

    def test_cancel_without_reason_keeps_default(self, service):
        action = service.create_pending_action("user-1", "send_email")

        result = service.cancel_action("user-1", action["id"])

        assert result["rejection_reason"] == "unspecified"
        assert RecordStore(PENDING_ACTIONS).get(action["id"])["cancellation_reason"] == "User declined"
        assert RecordStore(ACTION_FEEDBACK).first() is None
