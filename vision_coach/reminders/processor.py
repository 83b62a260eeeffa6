"""Delivery of due habit reminders and goal check-ins."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..comms.gmail import EmailSender
from ..comms.quiet_hours import resolve_timezone
from ..comms.sms import AgentSmsService
from ..comms.voice import AgentVoiceService
from ..errors import AgentError
from ..logs import log_agent_action
from ..messages import goal_checkin_email, habit_reminder_subject
from ..store import GOAL_CHECKINS, HABIT_COMPLETIONS, HABIT_REMINDERS, RecordStore
from ..timeutil import to_iso, utc_now
from ..users import AgentSettings, UserDirectory
from .scheduler import local_day_bounds

logger = logging.getLogger(__name__)

HABIT_BATCH_LIMIT = 100
GOAL_BATCH_LIMIT = 50


@dataclass(slots=True)
class SendOutcome:
    success: bool
    error: Optional[str] = None


@dataclass(slots=True)
class ProcessSummary:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    goal_sent: int = 0
    goal_failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "habit_reminders": {"sent": self.sent, "failed": self.failed, "skipped": self.skipped},
            "goal_checkins": {"sent": self.goal_sent, "failed": self.goal_failed},
        }


class ReminderProcessor:
    """Sends due ``scheduled_habit_reminders`` and ``scheduled_goal_checkins``.

    Each reminder goes out on its stored channel, gated by the user's agent
    settings: email unless explicitly disabled, SMS and voice only when
    explicitly allowed. Push has no delivery service of its own and falls
    back to email.
    """

    def __init__(
        self,
        *,
        users: Optional[UserDirectory] = None,
        sms: Optional[AgentSmsService] = None,
        voice: Optional[AgentVoiceService] = None,
        email_sender: Optional[EmailSender] = None,
        reminders: Optional[RecordStore] = None,
        goal_checkins: Optional[RecordStore] = None,
        completions: Optional[RecordStore] = None,
    ) -> None:
        self.users = users or UserDirectory()
        self.sms = sms or AgentSmsService(users=self.users)
        self.voice = voice or AgentVoiceService(users=self.users)
        self.email_sender = email_sender or EmailSender()
        self.reminders = reminders or RecordStore(HABIT_REMINDERS)
        self.goal_checkins = goal_checkins or RecordStore(GOAL_CHECKINS)
        self.completions = completions or RecordStore(HABIT_COMPLETIONS)

    def run(self, now: Optional[datetime] = None) -> ProcessSummary:
        now = now or utc_now()
        summary = ProcessSummary()
        due = self.reminders.query(
            [("status", "==", "scheduled"), ("scheduled_for", "<=", to_iso(now))],
            limit=HABIT_BATCH_LIMIT,
        )
        logger.info("Found %d due habit reminders", len(due))

        for reminder in due:
            try:
                status = self._process_reminder(reminder, now)
            except AgentError as exc:
                logger.error("Error processing reminder %s: %s", reminder["id"], exc.message)
                self.reminders.update(
                    reminder["id"], {"status": "failed", "error_message": exc.message}
                )
                summary.failed += 1
                summary.errors[reminder["id"]] = exc.message
                continue
            if status == "sent":
                summary.sent += 1
            elif status == "skipped":
                summary.skipped += 1
            else:
                summary.failed += 1

        self._process_goal_checkins(now, summary)
        logger.info(
            "Processed: %d sent, %d failed, %d skipped; goal check-ins: %d sent, %d failed",
            summary.sent,
            summary.failed,
            summary.skipped,
            summary.goal_sent,
            summary.goal_failed,
        )
        return summary

    # =========================================================================
    # Habit reminders
    # =========================================================================

    def _completed_today(self, reminder: Dict[str, Any], now: datetime) -> bool:
        prefs = self.users.comm_preferences(reminder["user_id"])
        today = now.astimezone(resolve_timezone(prefs.timezone)).date()
        start, end = local_day_bounds(today, prefs.timezone)
        return (
            self.completions.first(
                [
                    ("habit_id", "==", reminder.get("habit_id")),
                    ("completed_at", ">=", start),
                    ("completed_at", "<", end),
                ]
            )
            is not None
        )

    def _process_reminder(self, reminder: Dict[str, Any], now: datetime) -> str:
        stamp = to_iso(now)
        if self._completed_today(reminder, now):
            self.reminders.update(reminder["id"], {"status": "skipped", "sent_at": stamp})
            return "skipped"

        settings = self.users.agent_settings(reminder["user_id"])
        if not settings.agent_actions_enabled:
            self.reminders.update(reminder["id"], {"status": "skipped", "sent_at": stamp})
            return "skipped"

        outcome = self._send(reminder, settings, now)
        if outcome.success:
            self.reminders.update(reminder["id"], {"status": "sent", "sent_at": stamp})
            return "sent"

        logger.warning("Failed to send reminder %s: %s", reminder["id"], outcome.error)
        self.reminders.update(
            reminder["id"],
            {"status": "failed", "sent_at": stamp, "error_message": outcome.error},
        )
        return "failed"

    def _send(self, reminder: Dict[str, Any], settings: AgentSettings, now: datetime) -> SendOutcome:
        channel = reminder.get("reminder_channel") or "push"
        if channel == "email":
            if settings.allow_send_email is False:
                return SendOutcome(False, "Email disabled")
            return self._send_email_reminder(reminder)

        if channel == "sms":
            if settings.allow_send_sms is not True:
                return SendOutcome(False, "SMS disabled")
            result = self.sms.send(
                reminder["user_id"],
                reminder.get("reminder_message") or "",
                context={
                    "type": "habit_reminder",
                    "habit_id": reminder.get("habit_id"),
                    "habit_name": reminder.get("habit_name"),
                },
                now=now,
            )
            return SendOutcome(result.success, result.error)

        if channel == "voice":
            if settings.allow_voice_calls is not True:
                return SendOutcome(False, "Voice calls disabled")
            result = self.voice.call(
                reminder["user_id"],
                "habit_reminder",
                message=reminder.get("reminder_message"),
                context={
                    "habit_id": reminder.get("habit_id"),
                    "habit_title": reminder.get("habit_name"),
                },
                now=now,
            )
            return SendOutcome(result.success, result.error)

        # push and anything unknown
        if settings.allow_send_email is not False:
            return self._send_email_reminder(reminder)
        logger.info("Push notification simulated for reminder %s", reminder["id"])
        return SendOutcome(True)

    def _send_email_reminder(self, reminder: Dict[str, Any]) -> SendOutcome:
        profile = self.users.profile(reminder["user_id"])
        if not profile.email:
            return SendOutcome(False, "No email found for user")

        subject = habit_reminder_subject(reminder.get("habit_name") or "your habit")
        result = self.email_sender.send(
            to_address=profile.email,
            subject=subject,
            body=reminder.get("reminder_message") or subject,
        )
        log_agent_action(
            user_id=reminder["user_id"],
            action_type="send_email",
            action_status="executed" if result.success else "failed",
            action_payload={
                "email": profile.email,
                "subject": subject,
                "habit_id": reminder.get("habit_id"),
            },
            trigger_context="habit_reminder",
            error_message=result.error,
            extra={"related_habit_id": reminder.get("habit_id")},
            executed_at=utc_now(),
        )
        return SendOutcome(result.success, result.error)

    # =========================================================================
    # Goal check-ins
    # =========================================================================

    def _process_goal_checkins(self, now: datetime, summary: ProcessSummary) -> None:
        due = self.goal_checkins.query(
            [("status", "==", "scheduled"), ("scheduled_for", "<=", to_iso(now))],
            limit=GOAL_BATCH_LIMIT,
        )
        for checkin in due:
            user_id = checkin["user_id"]
            settings = self.users.agent_settings(user_id)
            if not settings.agent_actions_enabled:
                self.goal_checkins.update(checkin["id"], {"status": "skipped"})
                continue

            profile = self.users.profile(user_id)
            if not profile.email:
                self.goal_checkins.update(checkin["id"], {"status": "failed"})
                summary.goal_failed += 1
                continue

            subject, body = goal_checkin_email(
                profile.first_name,
                checkin.get("goal_title") or "your goal",
                checkin.get("current_progress"),
            )
            result = self.email_sender.send(to_address=profile.email, subject=subject, body=body)
            if result.success:
                self.goal_checkins.update(
                    checkin["id"], {"status": "sent", "sent_at": to_iso(now)}
                )
                summary.goal_sent += 1
            else:
                self.goal_checkins.update(checkin["id"], {"status": "failed"})
                summary.goal_failed += 1

            log_agent_action(
                user_id=user_id,
                action_type="send_email",
                action_status="executed" if result.success else "failed",
                action_payload={
                    "email": profile.email,
                    "subject": subject,
                    "goal_id": checkin.get("goal_id"),
                },
                trigger_context="goal_checkin",
                error_message=result.error,
                extra={"related_goal_id": checkin.get("goal_id")},
                executed_at=now,
            )
