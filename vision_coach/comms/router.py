"""Channel routing for coach messages.

``select_channel`` is the pure policy: push unless the urgency or the message
type call for something louder. ``CommunicationRouter.route`` applies it to a
real user and falls back to push whenever the chosen channel cannot reach
them right now. Unknown message types and urgencies route like ``generic``
and ``medium``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..errors import AgentError, AgentErrors, ErrorCode
from ..messages import push_title
from ..notifications.checkins import CheckinService
from ..timeutil import utc_now
from ..users import UserDirectory
from .gmail import EmailSender
from .quiet_hours import is_in_quiet_hours
from .sms import AgentSmsService
from .voice import AgentVoiceService

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ("morning_briefing", "habit_reminder", "pace_warning", "weekly_review", "generic")
URGENCIES = ("high", "medium", "low")

TYPE_CHANNELS = {
    "morning_briefing": "voice",
    "weekly_review": "email",
}


def select_channel(message_type: str, urgency: str = "medium") -> str:
    """Pick the preferred channel; message type rules override urgency."""
    channel = "push"
    if urgency == "high":
        channel = "sms"
    return TYPE_CHANNELS.get(message_type, channel)


@dataclass(slots=True)
class RouteRequest:
    user_id: str
    type: str = "generic"
    content: str = ""
    urgency: str = "medium"
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RouteResult:
    channel: str
    requested_channel: str
    fallback_reason: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "channel": self.channel,
            "requestedChannel": self.requested_channel,
            "fallbackReason": self.fallback_reason,
            "result": self.result,
        }


class CommunicationRouter:
    def __init__(
        self,
        *,
        users: Optional[UserDirectory] = None,
        sms: Optional[AgentSmsService] = None,
        voice: Optional[AgentVoiceService] = None,
        email_sender: Optional[EmailSender] = None,
        checkins: Optional[CheckinService] = None,
    ) -> None:
        self.users = users or UserDirectory()
        self.sms = sms or AgentSmsService(users=self.users)
        self.voice = voice or AgentVoiceService(users=self.users)
        self.email_sender = email_sender or EmailSender()
        self.checkins = checkins or CheckinService(users=self.users, email_sender=self.email_sender)

    def route(self, request: RouteRequest, *, now: Optional[datetime] = None) -> RouteResult:
        if not request.user_id:
            raise AgentErrors.missing_required_field("user_id")
        now = now or utc_now()
        requested = select_channel(request.type, request.urgency)
        channel, reason = self._reachable_channel(request.user_id, requested, now)
        logger.info(
            "Routing message for user %s: type=%s urgency=%s -> %s%s",
            request.user_id,
            request.type,
            request.urgency,
            channel,
            f" (fallback: {reason})" if reason else "",
        )

        if channel in ("sms", "voice"):
            try:
                result = self._send_phone(channel, request, now)
            except AgentError as exc:
                if exc.code != ErrorCode.USER_SETTINGS_BLOCKED.value:
                    raise
                logger.info("%s disabled for user %s, falling back to push", channel, request.user_id)
                return RouteResult(
                    "push", requested, "channel_disabled", self._schedule_push(request, now, in_app_only=True)
                )
            return RouteResult(channel, requested, reason, result)

        if channel == "email":
            return RouteResult(channel, requested, reason, self._send_email(request))

        return RouteResult("push", requested, reason, self._schedule_push(request, now))

    def _reachable_channel(self, user_id: str, requested: str, now: datetime):
        if requested in ("sms", "voice"):
            prefs = self.users.comm_preferences(user_id)
            if not prefs.phone_number:
                return "push", "no_phone_number"
            if is_in_quiet_hours(prefs.quiet_hours, now, prefs.timezone):
                return "push", "quiet_hours"
        elif requested == "email":
            if not self.users.profile(user_id).email:
                return "push", "no_email"
        return requested, None

    def _send_phone(self, channel: str, request: RouteRequest, now: datetime) -> Dict[str, Any]:
        if channel == "sms":
            result = self.sms.send(
                request.user_id, request.content, context=request.type, now=now
            )
        else:
            result = self.voice.call(
                request.user_id, "custom", message=request.content, context=request.type, now=now
            )
        return result.to_dict()

    def _send_email(self, request: RouteRequest) -> Dict[str, Any]:
        profile = self.users.profile(request.user_id)
        subject = push_title(request.type)
        result = self.email_sender.send(
            to_address=profile.email, subject=subject, body=request.content
        )
        if not result.success:
            raise AgentErrors.external_service_error("gmail", result.error)
        return {"success": True, "message_id": result.message_id, "subject": subject}

    def _schedule_push(self, request: RouteRequest, now: datetime, *, in_app_only: bool = False) -> Dict[str, Any]:
        content = {
            "title": push_title(request.type),
            "message": request.content,
            "context": request.context,
        }
        if in_app_only:
            # Settings blocked the louder channel, so this one must not go out by text.
            content["in_app_only"] = True
        checkin = self.checkins.schedule(
            request.user_id,
            checkin_type=request.type,
            scheduled_for=now,
            channel="push",
            content=content,
            now=now,
        )
        return {"success": True, "checkin": checkin}
