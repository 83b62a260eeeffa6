"""Agent-initiated SMS with permission and quiet-hours gates."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from ..errors import AgentError, AgentErrors, ErrorCode
from ..logs import log_agent_action
from ..timeutil import utc_now
from ..users import AgentSettings, UserDirectory
from .quiet_hours import is_in_quiet_hours
from .results import DeliveryResult
from .telephony import TwilioGateway, normalize_phone_number

logger = logging.getLogger(__name__)

NO_PHONE_MESSAGE = (
    "No phone number found for user. Please configure in Settings > Notifications."
)


def check_agent_enabled(settings: AgentSettings) -> None:
    """Raise USER_SETTINGS_BLOCKED when saved settings turn agent actions off."""
    if settings.exists and not settings.agent_actions_enabled:
        raise AgentErrors.user_settings_blocked(
            "agent_actions_enabled",
            "Agent actions are disabled. Enable them in Settings > AI Agent.",
        )


class AgentSmsService:
    def __init__(
        self,
        *,
        gateway: Optional[TwilioGateway] = None,
        users: Optional[UserDirectory] = None,
    ) -> None:
        self.gateway = gateway or TwilioGateway()
        self.users = users or UserDirectory()

    def send(
        self,
        user_id: str,
        message: str,
        *,
        phone_number: Optional[str] = None,
        context: Any = None,
        now: Optional[datetime] = None,
    ) -> DeliveryResult:
        """Send ``message`` to the user.

        Raises:
            AgentError: MISSING_REQUIRED_FIELD without user, message or phone;
                USER_SETTINGS_BLOCKED when the user's agent settings forbid
                SMS; EXTERNAL_SERVICE_ERROR when Twilio rejects the request.
        """
        if not user_id:
            raise AgentErrors.missing_required_field("user_id")
        if not message:
            raise AgentErrors.missing_required_field("message")

        prefs = self.users.comm_preferences(user_id)
        target = phone_number or prefs.phone_number
        if not target:
            raise AgentError(
                ErrorCode.MISSING_REQUIRED_FIELD,
                f"No phone number on file for user {user_id}",
                user_message=NO_PHONE_MESSAGE,
                context={"fields": ["phone_number"]},
            )
        target = normalize_phone_number(target)

        settings = self.users.agent_settings(user_id)
        check_agent_enabled(settings)
        if settings.exists and settings.allow_send_sms is False:
            raise AgentErrors.user_settings_blocked(
                "allow_send_sms", "SMS sending is disabled in your agent settings."
            )

        trigger = context or "conversation"
        if is_in_quiet_hours(prefs.quiet_hours, now or utc_now(), prefs.timezone):
            log_agent_action(
                user_id=user_id,
                action_type="send_sms",
                action_status="failed",
                action_payload={
                    "phone_number": target,
                    "message": message,
                    "blocked_reason": "quiet_hours",
                },
                error_message="SMS blocked due to quiet hours",
                trigger_context=context or "scheduled",
            )
            logger.info("SMS to user %s blocked by quiet hours", user_id)
            return DeliveryResult(
                success=False,
                channel="sms",
                to=target,
                blocked_reason="quiet_hours",
                error="Currently in quiet hours. SMS will not be sent.",
                details={"quiet_hours": prefs.quiet_hours},
            )

        try:
            receipt = self.gateway.send_sms(target, message)
        except AgentError as exc:
            log_agent_action(
                user_id=user_id,
                action_type="send_sms",
                action_status="failed",
                action_payload={"phone_number": target, "message": message},
                error_message=exc.message,
                trigger_context=trigger,
            )
            raise

        log_agent_action(
            user_id=user_id,
            action_type="send_sms",
            action_status="executed",
            action_payload={"phone_number": target, "message": message},
            result_payload={"sid": receipt.sid, "simulated": receipt.simulated},
            trigger_context=trigger,
        )
        return DeliveryResult(
            success=True,
            channel="sms",
            sid=receipt.sid,
            simulated=receipt.simulated,
            to=target,
        )
