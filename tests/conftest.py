"""Shared fixtures: file-backed storage and fake delivery collaborators."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from vision_coach.comms.gmail import EmailResult
from vision_coach.comms.telephony import DeliveryReceipt, normalize_phone_number
from vision_coach.errors import AgentErrors
from vision_coach.store import AGENT_SETTINGS, COMM_PREFERENCES, PROFILES, RecordStore
from vision_coach.users import UserDirectory


class FakeGateway:
    """Records SMS and calls instead of talking to Twilio."""

    def __init__(self, *, configured: bool = True, fail: bool = False) -> None:
        self.configured = configured
        self.fail = fail
        self.sms: List[Dict[str, str]] = []
        self.calls: List[Dict[str, str]] = []

    def send_sms(self, to: str, body: str) -> DeliveryReceipt:
        if self.fail:
            raise AgentErrors.external_service_error("twilio", "boom")
        to = normalize_phone_number(to)
        self.sms.append({"to": to, "body": body})
        return DeliveryReceipt(sid=f"SM{len(self.sms)}", to=to, status="queued")

    def place_call(self, to: str, message: str) -> DeliveryReceipt:
        if self.fail:
            raise AgentErrors.external_service_error("twilio", "boom")
        to = normalize_phone_number(to)
        self.calls.append({"to": to, "message": message})
        return DeliveryReceipt(sid=f"CA{len(self.calls)}", to=to, status="queued")


class FakeEmailSender:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Dict[str, str]] = []

    def send(self, *, to_address: str, subject: str, body: str) -> EmailResult:
        if self.fail:
            return EmailResult(success=False, error="gmail down")
        self.sent.append({"to": to_address, "subject": subject, "body": body})
        return EmailResult(success=True, message_id=f"msg-{len(self.sent)}")


@pytest.fixture
def store_dir(tmp_path, monkeypatch):
    """Point every RecordStore at a temporary JSONL directory."""
    path = tmp_path / "store"
    monkeypatch.setenv("VC_STORE_FORCE_FILE", "1")
    monkeypatch.setenv("VC_STORE_DIR", str(path))
    for name in (
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_PHONE_NUMBER",
        "VC_SERVICE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    return path


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def users(store_dir):
    return UserDirectory()


@pytest.fixture
def seed_user(store_dir):
    """Create settings, preferences and a profile for one user."""

    def _seed(
        user_id: str = "user-1",
        *,
        settings: Optional[Dict[str, Any]] = None,
        prefs: Optional[Dict[str, Any]] = None,
        profile: Optional[Dict[str, Any]] = None,
    ) -> str:
        if settings is not None:
            RecordStore(AGENT_SETTINGS).upsert(user_id, {"user_id": user_id, **settings})
        if prefs is not None:
            RecordStore(COMM_PREFERENCES).upsert(user_id, {"user_id": user_id, **prefs})
        RecordStore(PROFILES).upsert(
            user_id,
            {"user_id": user_id, **(profile or {"full_name": "Ada Lovelace", "email": "ada@example.com"})},
        )
        return user_id

    return _seed
