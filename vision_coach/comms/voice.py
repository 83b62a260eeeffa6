"""Agent-initiated voice calls."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from ..errors import AgentError, AgentErrors, ErrorCode
from ..logs import log_agent_action
from ..messages import voice_call_message
from ..timeutil import utc_now
from ..users import UserDirectory
from .quiet_hours import is_in_quiet_hours
from .results import DeliveryResult
from .sms import NO_PHONE_MESSAGE, check_agent_enabled
from .telephony import TwilioGateway, normalize_phone_number

logger = logging.getLogger(__name__)

CALL_TYPES = ("habit_reminder", "goal_checkin", "accountability", "celebration", "custom")


class AgentVoiceService:
    def __init__(
        self,
        *,
        gateway: Optional[TwilioGateway] = None,
        users: Optional[UserDirectory] = None,
    ) -> None:
        self.gateway = gateway or TwilioGateway()
        self.users = users or UserDirectory()

    def call(
        self,
        user_id: str,
        call_type: str,
        *,
        message: Optional[str] = None,
        context: Any = None,
        now: Optional[datetime] = None,
    ) -> DeliveryResult:
        """Place a coaching call to the user's phone on file.

        Without a ``message`` the default script for ``call_type`` is spoken.
        Simulated calls are logged as executed; real calls stay pending until
        Twilio reports back.
        """
        if not user_id:
            raise AgentErrors.missing_required_field("user_id")
        if not call_type:
            raise AgentErrors.missing_required_field("call_type")

        settings = self.users.agent_settings(user_id)
        check_agent_enabled(settings)
        if settings.exists and settings.allow_voice_calls is False:
            raise AgentErrors.user_settings_blocked(
                "allow_voice_calls", "Voice calls are disabled in your agent settings."
            )

        prefs = self.users.comm_preferences(user_id)
        if not prefs.phone_number:
            raise AgentError(
                ErrorCode.MISSING_REQUIRED_FIELD,
                f"No phone number on file for user {user_id}",
                user_message=NO_PHONE_MESSAGE,
                context={"fields": ["phone_number"]},
            )
        if not prefs.call_enabled:
            raise AgentErrors.user_settings_blocked(
                "call_enabled", "Voice calls are disabled in your notification preferences."
            )
        target = normalize_phone_number(prefs.phone_number)
        trigger = context or call_type

        if is_in_quiet_hours(prefs.quiet_hours, now or utc_now(), prefs.timezone):
            log_agent_action(
                user_id=user_id,
                action_type="voice_call",
                action_status="failed",
                action_payload={
                    "phone_number": target,
                    "call_type": call_type,
                    "blocked_reason": "quiet_hours",
                },
                error_message="Voice call blocked due to quiet hours",
                trigger_context=trigger,
            )
            logger.info("Call to user %s blocked by quiet hours", user_id)
            return DeliveryResult(
                success=False,
                channel="voice",
                to=target,
                blocked_reason="quiet_hours",
                error="Currently in quiet hours. Voice call will not be initiated.",
                details={"quiet_hours": prefs.quiet_hours},
            )

        script = message or voice_call_message(call_type, context)
        try:
            receipt = self.gateway.place_call(target, script)
        except AgentError as exc:
            log_agent_action(
                user_id=user_id,
                action_type="voice_call",
                action_status="failed",
                action_payload={"phone_number": target, "call_type": call_type, "message": script},
                error_message=exc.message,
                trigger_context=trigger,
            )
            raise

        log_agent_action(
            user_id=user_id,
            action_type="voice_call",
            action_status="executed" if receipt.simulated else "pending",
            action_payload={
                "phone_number": target,
                "call_type": call_type,
                "call_sid": receipt.sid,
            },
            result_payload={"sid": receipt.sid, "simulated": receipt.simulated},
            trigger_context=trigger,
            executed_at=utc_now(),
        )
        return DeliveryResult(
            success=True,
            channel="voice",
            sid=receipt.sid,
            simulated=receipt.simulated,
            to=target,
        )
