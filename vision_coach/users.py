"""Per-user settings, communication preferences and profiles."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .store import AGENT_SETTINGS, COMM_PREFERENCES, PROFILES, RecordStore


@dataclass(slots=True)
class AgentSettings:
    """What the agent is allowed to do for a user.

    ``exists`` is False when the user never saved settings. The allow flags
    are tri-state: None means "not set", which some callers treat as allowed
    and others as denied.
    """

    user_id: str
    exists: bool = False
    agent_actions_enabled: bool = False
    allow_send_email: Optional[bool] = None
    allow_send_sms: Optional[bool] = None
    allow_voice_calls: Optional[bool] = None
    habit_reminders_enabled: bool = False
    habit_reminder_channel: Optional[str] = None
    habit_reminder_timing: str = "at_time"
    habit_reminder_minutes_before: int = 0

    @classmethod
    def from_record(cls, user_id: str, data: Optional[Dict[str, Any]]) -> "AgentSettings":
        if not data:
            return cls(user_id=user_id)
        return cls(
            user_id=user_id,
            exists=True,
            agent_actions_enabled=bool(data.get("agent_actions_enabled")),
            allow_send_email=data.get("allow_send_email"),
            allow_send_sms=data.get("allow_send_sms"),
            allow_voice_calls=data.get("allow_voice_calls"),
            habit_reminders_enabled=bool(data.get("habit_reminders_enabled")),
            habit_reminder_channel=data.get("habit_reminder_channel"),
            habit_reminder_timing=data.get("habit_reminder_timing") or "at_time",
            habit_reminder_minutes_before=int(data.get("habit_reminder_minutes_before") or 0),
        )

    @property
    def sms_blocked(self) -> bool:
        """True when saved settings turn off agent actions or texting."""
        return self.exists and (not self.agent_actions_enabled or self.allow_send_sms is False)


@dataclass(slots=True)
class CommPreferences:
    """Contact details and delivery preferences for a user."""

    user_id: str
    exists: bool = False
    phone_number: Optional[str] = None
    phone_verified: bool = False
    sms_enabled: Optional[bool] = None
    call_enabled: bool = False
    preferred_channel: Optional[str] = None
    quiet_hours: Optional[Dict[str, Any]] = None
    timezone: Optional[str] = None

    @classmethod
    def from_record(cls, user_id: str, data: Optional[Dict[str, Any]]) -> "CommPreferences":
        if not data:
            return cls(user_id=user_id)
        return cls(
            user_id=user_id,
            exists=True,
            phone_number=data.get("phone_number") or None,
            phone_verified=bool(data.get("phone_verified")),
            sms_enabled=data.get("sms_enabled"),
            call_enabled=bool(data.get("call_enabled")),
            preferred_channel=data.get("preferred_channel"),
            quiet_hours=data.get("quiet_hours"),
            timezone=data.get("timezone"),
        )


@dataclass(slots=True)
class Profile:
    user_id: str
    full_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def first_name(self) -> str:
        """First word of the full name, or "there" for greetings."""
        if self.full_name and self.full_name.strip():
            return self.full_name.strip().split(" ")[0]
        return "there"

    @classmethod
    def from_record(cls, user_id: str, data: Optional[Dict[str, Any]]) -> "Profile":
        data = data or {}
        return cls(
            user_id=user_id,
            full_name=data.get("full_name"),
            email=data.get("email") or None,
        )


class UserDirectory:
    """Read access to the three per-user collections."""

    def __init__(
        self,
        *,
        settings_store: Optional[RecordStore] = None,
        preferences_store: Optional[RecordStore] = None,
        profile_store: Optional[RecordStore] = None,
    ) -> None:
        self.settings_store = settings_store or RecordStore(AGENT_SETTINGS)
        self.preferences_store = preferences_store or RecordStore(COMM_PREFERENCES)
        self.profile_store = profile_store or RecordStore(PROFILES)

    def agent_settings(self, user_id: str) -> AgentSettings:
        return AgentSettings.from_record(user_id, self.settings_store.get(user_id))

    def comm_preferences(self, user_id: str) -> CommPreferences:
        return CommPreferences.from_record(user_id, self.preferences_store.get(user_id))

    def profile(self, user_id: str) -> Profile:
        return Profile.from_record(user_id, self.profile_store.get(user_id))

    def user_id_for_email(self, email: str) -> Optional[str]:
        """Resolve an authenticated email to the profile's user id."""
        record = self.profile_store.first([("email", "==", email.strip().lower())])
        if record is None:
            return None
        return record.get("user_id") or record["id"]

    def users_with_habit_reminders(self) -> List[AgentSettings]:
        """Settings of every user with habit reminders and agent actions on."""
        records = self.settings_store.query(
            [
                ("habit_reminders_enabled", "==", True),
                ("agent_actions_enabled", "==", True),
            ]
        )
        return [
            AgentSettings.from_record(record.get("user_id") or record["id"], record)
            for record in records
        ]
