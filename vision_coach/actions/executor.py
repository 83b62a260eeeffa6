"""Execution of confirmed agent actions."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from ..comms.gmail import EmailSender
from ..comms.sms import AgentSmsService
from ..comms.voice import AgentVoiceService
from ..store import RecordStore
from ..timeutil import to_iso, utc_now

logger = logging.getLogger(__name__)

ACTION_STEPS = "action_steps"

ActionHandler = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class ActionExecutor:
    """Runs a confirmed action and reports ``{"success": ..., ...}``.

    Delivery errors raised by the SMS and voice services propagate to the
    caller, which records the action as failed.
    """

    def __init__(
        self,
        *,
        sms: Optional[AgentSmsService] = None,
        voice: Optional[AgentVoiceService] = None,
        email_sender: Optional[EmailSender] = None,
        action_steps: Optional[RecordStore] = None,
    ) -> None:
        self.sms = sms or AgentSmsService()
        self.voice = voice or AgentVoiceService()
        self.email_sender = email_sender or EmailSender()
        self.action_steps = action_steps or RecordStore(ACTION_STEPS)
        self._handlers: Dict[str, ActionHandler] = {
            "send_sms": self._send_sms,
            "make_voice_call": self._make_voice_call,
            "send_email": self._send_email,
            "send_email_to_contact": self._send_email_to_contact,
            "create_calendar_event": self._create_calendar_event,
        }

    def execute(self, user_id: str, action_type: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        handler = self._handlers.get(action_type)
        if handler is None:
            logger.warning("Unknown action type %s for user %s", action_type, user_id)
            return {"success": False, "error": f"Unknown action type: {action_type}"}
        return handler(user_id, payload or {})

    def _send_sms(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self.sms.send(
            user_id,
            payload.get("message") or "",
            phone_number=payload.get("phone_number"),
            context="confirmation",
        )
        return result.to_dict()

    def _make_voice_call(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        result = self.voice.call(
            user_id,
            payload.get("call_type") or "custom",
            message=payload.get("message"),
            context={
                "habit_id": payload.get("related_habit_id"),
                "goal_id": payload.get("related_goal_id"),
            },
        )
        return result.to_dict()

    def _email(self, to_address: Optional[str], payload: Dict[str, Any]) -> Dict[str, Any]:
        if not to_address:
            return {"success": False, "error": "No recipient address"}
        result = self.email_sender.send(
            to_address=to_address,
            subject=payload.get("subject") or "",
            body=payload.get("body") or "",
        )
        if not result.success:
            return {"success": False, "error": result.error}
        return {"success": True, "message_id": result.message_id, "to": to_address}

    def _send_email(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._email(payload.get("to"), payload)

    def _send_email_to_contact(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._email(payload.get("contact_email"), payload)

    def _create_calendar_event(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        # Stored as an action step with calendar metadata.
        start_time = payload.get("start_time")
        step = self.action_steps.insert(
            {
                "user_id": user_id,
                "title": payload.get("title"),
                "description": payload.get("description") or "",
                "due_date": start_time.split("T")[0] if start_time else None,
                "priority": "medium",
                "status": "pending",
                "metadata": {
                    "calendar_event": True,
                    "start_time": start_time,
                    "end_time": payload.get("end_time"),
                    "attendees": payload.get("attendees"),
                },
                "created_at": to_iso(utc_now()),
            }
        )
        return {
            "success": True,
            "message": f"Calendar event created: {payload.get('title')}",
            "task_id": step["id"],
        }
