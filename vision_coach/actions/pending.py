"""Human-in-the-loop confirmation of agent actions.

Risky actions are not executed straight away. The agent stores them in
``pending_agent_actions`` with a 24 hour expiry and the user confirms or
cancels each one. Both decisions are written to the action history, and any
feedback the user gives lands in ``agent_action_feedback``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from ..errors import AgentError, AgentErrors
from ..logs import log_agent_action
from ..store import ACTION_FEEDBACK, PENDING_ACTIONS, RecordStore
from ..timeutil import parse_iso, to_iso, utc_now
from .executor import ActionExecutor

logger = logging.getLogger(__name__)

ACTION_TTL = timedelta(hours=24)
DEFAULT_CANCEL_REASON = "User declined"

REJECTION_KEYWORDS = (
    ("timing", ("not now", "later", "busy", "timing")),
    ("privacy", ("privacy", "secure", "sensitive", "personal")),
    ("incorrect_action", ("wrong", "incorrect", "mistake", "not what")),
    ("changed_mind", ("changed", "nevermind", "cancel", "don't want")),
    ("resource_concern", ("expensive", "cost", "limit", "quota")),
    ("prefer_manual", ("manual", "myself", "prefer to", "i'll do")),
)


def categorize_rejection(reason: Optional[str]) -> str:
    """Bucket a free-text rejection reason for analytics."""
    if not reason:
        return "unspecified"
    lowered = reason.lower()
    for category, keywords in REJECTION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "other"


@dataclass(slots=True)
class ActionFeedback:
    """Optional rating and comment attached to a decision."""

    rating: Optional[int] = None
    comment: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["ActionFeedback"]:
        if value is None or isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls(rating=value.get("rating"), comment=value.get("comment"))
        raise TypeError(f"Unsupported feedback value: {value!r}")


def _action_label(action_type: str) -> str:
    return action_type.replace("_", " ")


class PendingActionService:
    def __init__(
        self,
        *,
        executor: Optional[ActionExecutor] = None,
        actions: Optional[RecordStore] = None,
        feedback: Optional[RecordStore] = None,
    ) -> None:
        self.executor = executor or ActionExecutor()
        self.actions = actions or RecordStore(PENDING_ACTIONS)
        self.feedback = feedback or RecordStore(ACTION_FEEDBACK)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_pending_action(
        self,
        user_id: str,
        action_type: str,
        action_payload: Optional[Dict[str, Any]] = None,
        *,
        confidence_score: Optional[float] = None,
        risk_level: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Queue an action for the user's confirmation."""
        if not user_id:
            raise AgentErrors.missing_required_field("user_id")
        if not action_type:
            raise AgentErrors.missing_required_field("action_type")
        now = now or utc_now()
        record = self.actions.insert(
            {
                "user_id": user_id,
                "action_type": action_type,
                "action_payload": action_payload or {},
                "confidence_score": confidence_score,
                "risk_level": risk_level,
                "reason": reason,
                "status": "pending",
                "created_at": to_iso(now),
                "expires_at": to_iso(now + ACTION_TTL),
            }
        )
        logger.info("Pending action %s (%s) created for user %s", record["id"], action_type, user_id)
        return record

    # =========================================================================
    # Decisions
    # =========================================================================

    def _load_pending(self, user_id: str, action_id: str) -> Dict[str, Any]:
        if not action_id:
            raise AgentErrors.missing_required_field("action_id")
        action = self.actions.first([("id", "==", action_id), ("user_id", "==", user_id)])
        if action is None:
            raise AgentErrors.resource_not_found("pending action", action_id)
        if action.get("status") != "pending":
            raise AgentErrors.action_already_processed(action_id, action.get("status") or "unknown")
        return action

    @staticmethod
    def _decision_ms(action: Dict[str, Any], now: datetime) -> Optional[int]:
        created = parse_iso(action.get("created_at"))
        if created is None:
            return None
        return int((now - created).total_seconds() * 1000)

    def confirm_action(
        self,
        user_id: str,
        action_id: str,
        feedback: Any = None,
        *,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Confirm a pending action and execute it.

        Raises:
            AgentError: RESOURCE_NOT_FOUND, ACTION_ALREADY_PROCESSED,
                ACTION_EXPIRED, or EXECUTION_FAILED when the executor raises.
        """
        now = now or utc_now()
        feedback = ActionFeedback.from_value(feedback)
        action = self._load_pending(user_id, action_id)

        expires_at = parse_iso(action.get("expires_at"))
        if expires_at is not None and expires_at < now:
            self.actions.update(action_id, {"status": "expired"})
            raise AgentErrors.action_expired(action_id)

        self.actions.update(action_id, {"status": "confirmed", "confirmed_at": to_iso(now)})
        action_type = action["action_type"]
        payload = action.get("action_payload") or {}
        decision_ms = self._decision_ms(action, now)

        try:
            result = self.executor.execute(user_id, action_type, payload)
        except AgentError as exc:
            logger.error("Execution of action %s failed: %s", action_id, exc.message)
            self.actions.update(
                action_id,
                {"status": "failed", "execution_result": {"error": exc.message}},
            )
            raise AgentErrors.execution_failed(action_type, exc.message) from exc

        succeeded = bool(result.get("success"))
        status = "executed" if succeeded else "failed"
        self.actions.update(
            action_id,
            {
                "status": status,
                "executed_at": to_iso(utc_now()),
                "execution_result": result,
            },
        )
        log_agent_action(
            user_id=user_id,
            action_type=action_type,
            action_status=status,
            action_payload=payload,
            result_payload=result,
            trigger_context="confirmation",
            error_message=None if succeeded else result.get("error"),
            extra={
                "confidence_score": action.get("confidence_score"),
                "risk_level": action.get("risk_level"),
            },
            executed_at=utc_now(),
        )
        if feedback is not None:
            self.feedback.insert(
                {
                    "user_id": user_id,
                    "action_id": action_id,
                    "feedback_type": "confirmation",
                    "rating": feedback.rating,
                    "comment": feedback.comment,
                    "time_to_decision_ms": decision_ms,
                    "created_at": to_iso(now),
                }
            )

        response: Dict[str, Any] = {
            "success": succeeded,
            "status": status,
            "result": result,
        }
        if succeeded:
            response["message"] = f"Action executed: {_action_label(action_type)}"
        else:
            response["error"] = result.get("error")
        return response

    def cancel_action(
        self,
        user_id: str,
        action_id: str,
        reason: Optional[str] = None,
        feedback: Any = None,
        *,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Cancel a pending action and record why."""
        now = now or utc_now()
        feedback = ActionFeedback.from_value(feedback)
        action = self._load_pending(user_id, action_id)
        action_type = action["action_type"]

        self.actions.update(
            action_id,
            {
                "status": "cancelled",
                "cancelled_at": to_iso(now),
                "cancellation_reason": reason or DEFAULT_CANCEL_REASON,
            },
        )
        log_agent_action(
            user_id=user_id,
            action_type=action_type,
            action_status="cancelled",
            action_payload=action.get("action_payload") or {},
            trigger_context="cancellation",
            extra={
                "confidence_score": action.get("confidence_score"),
                "risk_level": action.get("risk_level"),
            },
            executed_at=now,
        )

        category = categorize_rejection(reason)
        if feedback is not None or reason:
            self.feedback.insert(
                {
                    "user_id": user_id,
                    "action_id": action_id,
                    "feedback_type": "rejection",
                    "rating": feedback.rating if feedback else None,
                    "comment": (feedback.comment if feedback else None) or reason,
                    "rejection_reason": category,
                    "time_to_decision_ms": self._decision_ms(action, now),
                    "created_at": to_iso(now),
                }
            )

        return {
            "success": True,
            "message": f"Action cancelled: {_action_label(action_type)}",
            "action_type": action_type,
            "rejection_reason": category,
        }
