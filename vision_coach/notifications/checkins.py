"""Scheduled check-ins and event-driven coach notifications.

Check-ins live in ``scheduled_checkins``. ``process_due`` delivers the ones
whose time has come, pushing anything that lands in the user's quiet hours
to the end of the window. The ``check_*`` sweeps look for streak milestones
and goals that are falling behind and notify the user.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..comms.gmail import EmailSender
from ..comms.quiet_hours import is_in_quiet_hours, next_available_time
from ..comms.telephony import DeliveryReceipt, TwilioGateway
from ..errors import AgentError, AgentErrors, ErrorCode
from ..messages import render_notification
from ..store import (
    ACHIEVEMENTS,
    HABITS,
    PROGRESS_PREDICTIONS,
    SCHEDULED_CHECKINS,
    RecordStore,
)
from ..timeutil import parse_iso, to_iso, utc_now
from ..users import CommPreferences, UserDirectory

logger = logging.getLogger(__name__)

STREAK_MILESTONES = (7, 30, 100)
PACE_THRESHOLD = 0.8
PACE_LOOKBACK = timedelta(hours=24)
DUE_BATCH_LIMIT = 50

EVENT_TEMPLATES = {
    "milestone_approaching": "milestone_reminder",
    "pace_falling_behind": "pace_warning",
    "weekly_review_ready": "weekly_review",
    "welcome": "welcome",
}


def achievement_key(streak: int) -> str:
    return f"{streak}_day_streak"


def template_for_event(event_type: str, event_data: Optional[Dict[str, Any]] = None) -> str:
    """Pick the notification template for an event."""
    event_data = event_data or {}
    if event_type == "habit_completed":
        if event_data.get("streak") in STREAK_MILESTONES:
            return "streak_milestone"
        return "generic"
    return EVENT_TEMPLATES.get(event_type, "generic")


def pace_delay_weeks(target_date: Any, predicted_date: Any) -> Optional[int]:
    """Whole weeks (rounded up) the predicted completion trails the target."""
    target = parse_iso(target_date)
    predicted = parse_iso(predicted_date)
    if target is None or predicted is None:
        return None
    return math.ceil((predicted - target) / timedelta(weeks=1))


@dataclass(slots=True)
class SweepResult:
    """Outcome of a processing pass."""

    processed: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "processed": self.processed, "results": self.results}


class CheckinService:
    def __init__(
        self,
        *,
        gateway: Optional[TwilioGateway] = None,
        email_sender: Optional[EmailSender] = None,
        users: Optional[UserDirectory] = None,
        checkins: Optional[RecordStore] = None,
        habits: Optional[RecordStore] = None,
        achievements: Optional[RecordStore] = None,
        predictions: Optional[RecordStore] = None,
    ) -> None:
        self.gateway = gateway or TwilioGateway()
        self.email_sender = email_sender or EmailSender()
        self.users = users or UserDirectory()
        self.checkins = checkins or RecordStore(SCHEDULED_CHECKINS)
        self.habits = habits or RecordStore(HABITS)
        self.achievements = achievements or RecordStore(ACHIEVEMENTS)
        self.predictions = predictions or RecordStore(PROGRESS_PREDICTIONS)

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule(
        self,
        user_id: str,
        *,
        checkin_type: Optional[str] = None,
        scheduled_for: Optional[datetime] = None,
        channel: Optional[str] = None,
        content: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        if not user_id:
            raise AgentErrors.missing_required_field("user_id")
        created = now or utc_now()
        return self.checkins.insert(
            {
                "user_id": user_id,
                "checkin_type": checkin_type or "custom",
                "scheduled_for": to_iso(scheduled_for or created),
                "channel": channel or "sms",
                "status": "pending",
                "content": content or {},
                "created_at": to_iso(created),
            }
        )

    # =========================================================================
    # Delivery
    # =========================================================================

    def _send_text(self, prefs: CommPreferences, body: str) -> DeliveryReceipt:
        if not prefs.phone_number:
            raise AgentError(
                ErrorCode.MISSING_REQUIRED_FIELD,
                f"No phone number on file for user {prefs.user_id}",
                context={"fields": ["phone_number"]},
            )
        return self.gateway.send_sms(prefs.phone_number, body)

    def _deliver(
        self,
        user_id: str,
        channel: str,
        body: str,
        prefs: CommPreferences,
        *,
        in_app_only: bool = False,
    ) -> Dict[str, Any]:
        """Deliver one message and return the response stored on the check-in."""
        if channel == "sms":
            return {"sid": self._send_text(prefs, body).sid}
        if channel == "push":
            # Push rides on SMS only when a phone is on file and texting is allowed.
            if in_app_only or not prefs.phone_number or self.users.agent_settings(user_id).sms_blocked:
                return {"delivery": "in_app"}
            return {"sid": self._send_text(prefs, body).sid}
        if channel in ("call", "voice"):
            if not prefs.phone_number:
                raise AgentError(
                    ErrorCode.MISSING_REQUIRED_FIELD,
                    f"No phone number on file for user {user_id}",
                    context={"fields": ["phone_number"]},
                )
            return {"sid": self.gateway.place_call(prefs.phone_number, body).sid}
        if channel == "email":
            profile = self.users.profile(user_id)
            if not profile.email:
                raise AgentError(
                    ErrorCode.MISSING_REQUIRED_FIELD,
                    f"No email on file for user {user_id}",
                    context={"fields": ["email"]},
                )
            result = self.email_sender.send(
                to_address=profile.email, subject="A note from your Vision Coach", body=body
            )
            if not result.success:
                raise AgentErrors.external_service_error("gmail", result.error)
            return {"message_id": result.message_id}
        raise AgentError(
            ErrorCode.INVALID_PARAMETERS,
            f"Unsupported check-in channel: {channel}",
            context={"channel": channel},
        )

    def _checkin_body(self, checkin: Dict[str, Any], first_name: str) -> str:
        content = checkin.get("content") or {}
        if content.get("message"):
            return str(content["message"])
        data = {"name": first_name}
        data.update(content.get("templateData") or {})
        return render_notification(content.get("template"), data)

    def process_due(self, now: Optional[datetime] = None) -> SweepResult:
        """Deliver pending check-ins that are due, respecting quiet hours."""
        now = now or utc_now()
        due = self.checkins.query(
            [("status", "==", "pending"), ("scheduled_for", "<=", to_iso(now))],
            limit=DUE_BATCH_LIMIT,
        )
        outcome = SweepResult()

        for checkin in due:
            user_id = checkin.get("user_id")
            try:
                prefs = self.users.comm_preferences(user_id)
                if is_in_quiet_hours(prefs.quiet_hours, now, prefs.timezone):
                    resume_at = next_available_time(prefs.quiet_hours, now, prefs.timezone)
                    self.checkins.update(
                        checkin["id"],
                        {"scheduled_for": to_iso(resume_at), "status": "pending"},
                    )
                    outcome.results.append(
                        {"id": checkin["id"], "status": "rescheduled", "scheduled_for": to_iso(resume_at)}
                    )
                    continue

                channel = checkin.get("channel") or prefs.preferred_channel or "sms"
                body = self._checkin_body(checkin, self.users.profile(user_id).first_name)
                content = checkin.get("content") or {}
                response = self._deliver(
                    user_id, channel, body, prefs, in_app_only=bool(content.get("in_app_only"))
                )
                self.checkins.update(
                    checkin["id"],
                    {"status": "sent", "sent_at": to_iso(now), "response": response},
                )
                outcome.results.append({"id": checkin["id"], "status": "sent", "channel": channel})
            except AgentError as exc:
                logger.warning("Check-in %s failed: %s", checkin["id"], exc.message)
                self.checkins.update(
                    checkin["id"], {"status": "failed", "response": {"error": exc.message}}
                )
                outcome.results.append({"id": checkin["id"], "status": "failed", "error": exc.message})

        outcome.processed = len(outcome.results)
        return outcome

    # =========================================================================
    # Events and sweeps
    # =========================================================================

    def _record_sent(self, user_id: str, channel: str, body: str, template: str, response: Dict[str, Any]) -> None:
        now = utc_now()
        self.checkins.insert(
            {
                "user_id": user_id,
                "checkin_type": "custom",
                "scheduled_for": to_iso(now),
                "channel": channel,
                "status": "sent",
                "sent_at": to_iso(now),
                "content": {"message": body, "template": template},
                "response": response,
                "created_at": to_iso(now),
            }
        )

    def notify(self, user_id: str, template: str, data: Dict[str, Any], *, channel: Optional[str] = None) -> Dict[str, Any]:
        """Render ``template`` and send it right away on the user's channel."""
        prefs = self.users.comm_preferences(user_id)
        channel = channel or prefs.preferred_channel or "sms"
        values = {"name": self.users.profile(user_id).first_name}
        values.update(data)
        body = render_notification(template, values)

        if channel in ("call", "voice") and not prefs.call_enabled:
            logger.info("Calls disabled for user %s, %s not delivered", user_id, template)
            return {"delivered": False, "channel": channel, "reason": "calls_disabled"}

        response = self._deliver(user_id, channel, body, prefs)
        self._record_sent(user_id, channel, body, template, response)
        return {"delivered": True, "channel": channel, "response": response}

    def trigger_event(self, user_id: str, event_type: str, event_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not user_id:
            raise AgentErrors.missing_required_field("user_id")
        if not event_type:
            raise AgentErrors.missing_required_field("event_type")
        event_data = dict(event_data or {})
        template = template_for_event(event_type, event_data)
        delivery = self.notify(user_id, template, event_data)
        return {
            "success": True,
            "eventType": event_type,
            "template": template,
            "channel": delivery["channel"],
            "delivered": delivery["delivered"],
        }

    def check_streaks(self) -> Dict[str, Any]:
        """Celebrate habits whose streak just reached a milestone."""
        keys = [achievement_key(m) for m in STREAK_MILESTONES]
        earned = {
            (a.get("user_id"), a.get("achievement_key"))
            for a in self.achievements.query([("achievement_key", "in", keys)])
        }

        celebrated: List[Dict[str, Any]] = []
        for habit in self.habits.query([("is_active", "==", True)]):
            streak = int(habit.get("current_streak") or 0)
            if streak not in STREAK_MILESTONES:
                continue
            user_id = habit.get("user_id")
            key = achievement_key(streak)
            if (user_id, key) in earned:
                continue

            delivered = True
            try:
                self.notify(
                    user_id,
                    "streak_milestone",
                    {"habitTitle": habit.get("title"), "streak": streak},
                )
            except AgentError as exc:
                delivered = False
                logger.warning("Streak celebration for user %s not delivered: %s", user_id, exc.message)

            self.achievements.insert(
                {
                    "user_id": user_id,
                    "achievement_key": key,
                    "value": streak,
                    "habit_id": habit["id"],
                    "achieved_at": to_iso(utc_now()),
                }
            )
            earned.add((user_id, key))
            celebrated.append(
                {"userId": user_id, "habitId": habit["id"], "streak": streak, "delivered": delivered}
            )

        return {"success": True, "celebrations": len(celebrated), "celebrated": celebrated}

    def check_pace(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Warn users whose recent progress predictions trail their target."""
        now = now or utc_now()
        predictions = self.predictions.query(
            [
                ("current_pace", "<", PACE_THRESHOLD),
                ("calculated_at", ">=", to_iso(now - PACE_LOOKBACK)),
            ]
        )

        warned: List[Dict[str, Any]] = []
        for prediction in predictions:
            delay = pace_delay_weeks(
                prediction.get("target_date"), prediction.get("predicted_completion_date")
            )
            if not delay or delay <= 0:
                continue
            user_id = prediction.get("user_id")
            goal_type = prediction.get("goal_type")
            try:
                self.notify(
                    user_id,
                    "pace_warning",
                    {"goalTitle": goal_type, "delayWeeks": delay},
                )
            except AgentError as exc:
                logger.warning("Pace warning for user %s not delivered: %s", user_id, exc.message)
                continue
            warned.append({"userId": user_id, "goalType": goal_type, "delayWeeks": delay})

        return {"success": True, "warnings": len(warned), "warned": warned}
