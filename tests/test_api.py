import pytest
from fastapi.testclient import TestClient

from api.dependencies import build_services, get_rate_limiter, get_services, get_settings
from api.main import app
from vision_coach.config import Settings
from vision_coach.ratelimit import RateLimiter
from vision_coach.store import PENDING_ACTIONS, SCHEDULED_REMINDERS, RecordStore

from conftest import FakeEmailSender

USER_HEADERS = {"X-User-Email": "ada@example.com"}
JOB_HEADERS = {"X-Service-Key": "cron-secret"}


@pytest.fixture
def client(store_dir, monkeypatch, gateway, seed_user):
    monkeypatch.setenv("VC_DEV_AUTH_BYPASS", "1")
    monkeypatch.setenv("VC_SERVICE_KEY", "cron-secret")
    get_settings.cache_clear()
    seed_user(prefs={"phone_number": "5551234567", "call_enabled": True})

    services = build_services(
        Settings(service_key="cron-secret"),
        gateway=gateway,
        email_sender=FakeEmailSender(),
    )
    limiter = RateLimiter()
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    yield TestClient(app)
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def test_health_check(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["services"]["storage"] == "file"


def test_error_lookup_needs_no_auth(client):
    resp = client.get("/agent/errors/RATE_LIMITED")

    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["statusCode"] == 429
    assert body["retryable"] is True


def test_unknown_error_code_uses_fallback(client):
    body = client.get("/agent/errors/NOPE").json()

    assert body["code"] == "NOPE"
    assert body["statusCode"] == 400


class TestCommunications:
    def test_send_sms(self, client, gateway):
        resp = client.post("/communications/sms", json={"message": "Hi there"}, headers=USER_HEADERS)

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert gateway.sms[0]["to"] == "+15551234567"

    def test_route_validates_type(self, client):
        resp = client.post(
            "/communications/route",
            json={"content": "hi", "type": "bogus"},
            headers=USER_HEADERS,
        )

        assert resp.status_code == 422

    def test_route_high_urgency(self, client, gateway):
        resp = client.post(
            "/communications/route",
            json={"content": "Stand up!", "urgency": "high"},
            headers=USER_HEADERS,
        )

        body = resp.json()
        assert body["channel"] in ("sms", "push")
        assert body["requestedChannel"] == "sms"

    def test_unknown_user_is_forbidden(self, client):
        resp = client.post(
            "/communications/sms",
            json={"message": "hi"},
            headers={"X-User-Email": "stranger@example.com"},
        )

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "PERMISSION_DENIED"

    def test_missing_auth_header(self, client):
        resp = client.post("/communications/sms", json={"message": "hi"})

        assert resp.status_code == 401

    def test_rate_limit_headers_on_success(self, client):
        resp = client.post("/communications/sms", json={"message": "hi"}, headers=USER_HEADERS)

        assert resp.headers["X-RateLimit-Limit"] == "100"
        assert resp.headers["X-RateLimit-Remaining"] == "99"

    def test_rate_limited_after_window_fills(self, client):
        limiter = app.dependency_overrides[get_rate_limiter]()
        for _ in range(100):
            limiter.enforce("user-1", "api")

        resp = client.post("/communications/sms", json={"message": "hi"}, headers=USER_HEADERS)

        assert resp.status_code == 429
        assert "Retry-After" in resp.headers


class TestAgentActions:
    def test_confirm_and_repeat(self, client):
        services = app.dependency_overrides[get_services]()
        action = services.actions.create_pending_action(
            "user-1", "create_calendar_event", {"title": "Plan week"}
        )

        resp = client.post(
            f"/agent/actions/{action['id']}/confirm",
            json={"feedback": {"rating": 4}},
            headers=USER_HEADERS,
        )
        again = client.post(f"/agent/actions/{action['id']}/confirm", headers=USER_HEADERS)

        assert resp.status_code == 200
        assert resp.json()["status"] == "executed"
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "ACTION_ALREADY_PROCESSED"

    def test_cancel(self, client):
        services = app.dependency_overrides[get_services]()
        action = services.actions.create_pending_action("user-1", "send_email", {"to": "x@y.z"})

        resp = client.post(
            f"/agent/actions/{action['id']}/cancel",
            json={"reason": "I'll do it myself"},
            headers=USER_HEADERS,
        )

        assert resp.json()["rejection_reason"] == "prefer_manual"
        assert RecordStore(PENDING_ACTIONS).get(action["id"])["status"] == "cancelled"

    def test_missing_action(self, client):
        resp = client.post("/agent/actions/nope/cancel", headers=USER_HEADERS)

        assert resp.status_code == 404

    def test_feedback_rating_is_validated(self, client):
        resp = client.post(
            "/agent/actions/any/confirm",
            json={"feedback": {"rating": 9}},
            headers=USER_HEADERS,
        )

        assert resp.status_code == 422


class TestJobs:
    def test_requires_service_key(self, client):
        assert client.post("/jobs/habit-reminders/schedule").status_code == 403
        assert (
            client.post("/jobs/habit-reminders/schedule", headers={"X-Service-Key": "wrong"}).status_code
            == 403
        )

    def test_service_key_not_configured(self, client, monkeypatch):
        monkeypatch.delenv("VC_SERVICE_KEY")

        resp = client.post("/jobs/habit-reminders/schedule", headers=JOB_HEADERS)

        assert resp.status_code == 503

    def test_schedule_habit_reminders(self, client):
        resp = client.post("/jobs/habit-reminders/schedule", headers=JOB_HEADERS)

        assert resp.status_code == 200
        assert resp.json()["success"] is True

    def test_process_habit_reminders(self, client):
        body = client.post("/jobs/habit-reminders/process", headers=JOB_HEADERS).json()

        assert body["habit_reminders"] == {"sent": 0, "failed": 0, "skipped": 0}

    def test_dispatch_dry_run(self, client, gateway):
        RecordStore(SCHEDULED_REMINDERS).insert(
            {
                "user_id": "user-1",
                "channel": "sms",
                "status": "pending",
                "scheduled_for": "2026-01-01T00:00:00+00:00",
                "message": "Hi {firstName}",
            }
        )

        body = client.post(
            "/jobs/reminders/dispatch", json={"batchSize": 5, "dryRun": True}, headers=JOB_HEADERS
        ).json()

        assert body["processed"] == 1
        assert body["sent"] == 1
        assert gateway.sms == []

    def test_outreach_empty_queue(self, client):
        body = client.post("/jobs/outreach/process", headers=JOB_HEADERS).json()

        assert body["message"] == "No pending outreach to process"

    def test_checkin_schedule_and_trigger(self, client, gateway):
        scheduled = client.post(
            "/jobs/checkins/schedule",
            json={"userId": "user-1", "channel": "sms", "content": {"message": "Check in"}},
            headers=JOB_HEADERS,
        ).json()
        triggered = client.post(
            "/jobs/checkins/trigger_event",
            json={"userId": "user-1", "eventType": "welcome"},
            headers=JOB_HEADERS,
        ).json()

        assert scheduled["checkin"]["status"] == "pending"
        assert triggered["template"] == "welcome"
        assert gateway.sms[0]["body"].startswith("Welcome to Visionary, Ada!")

    def test_unknown_checkin_action(self, client):
        resp = client.post("/jobs/checkins/explode", headers=JOB_HEADERS)

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_PARAMETERS"
