"""Voice outreach queue processing."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..comms.telephony import TwilioGateway
from ..errors import AgentError, AgentErrors
from ..messages import outreach_message
from ..store import ASCENDING, DESCENDING, OUTREACH_QUEUE, RecordStore
from ..timeutil import to_iso, utc_now
from ..users import UserDirectory

logger = logging.getLogger(__name__)

OUTREACH_BATCH_SIZE = 10
MAX_ATTEMPTS = 3


class OutreachError(RuntimeError):
    """Raised when a queued outreach item cannot be delivered."""


@dataclass(slots=True)
class OutreachSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        if self.processed:
            message = f"Processed {self.processed} outreach items"
        else:
            message = "No pending outreach to process"
        return {
            "success": True,
            "message": message,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }


def outreach_name(email: Optional[str]) -> str:
    """Greeting name taken from the local part of the user's email."""
    if email and email.split("@")[0]:
        return email.split("@")[0]
    return "there"


class OutreachProcessor:
    """Places the voice calls queued in ``voice_outreach_queue``.

    Items are taken highest priority first, oldest first within a priority,
    ten per run. A failed item goes back to ``pending`` for another attempt
    until it has been tried three times.
    """

    def __init__(
        self,
        *,
        gateway: Optional[TwilioGateway] = None,
        users: Optional[UserDirectory] = None,
        queue: Optional[RecordStore] = None,
    ) -> None:
        self.gateway = gateway or TwilioGateway()
        self.users = users or UserDirectory()
        self.queue = queue or RecordStore(OUTREACH_QUEUE)

    def run(self, now: Optional[datetime] = None) -> OutreachSummary:
        """Process one batch of due outreach.

        Raises:
            AgentError: CONFIGURATION_ERROR when Twilio credentials are missing.
        """
        started = time.monotonic()
        if not self.gateway.configured:
            raise AgentErrors.configuration_error("TWILIO_ACCOUNT_SID")

        now = now or utc_now()
        summary = OutreachSummary()
        due = self.queue.query(
            [("status", "==", "pending"), ("scheduled_for", "<=", to_iso(now))],
            order_by=[("priority", DESCENDING), ("scheduled_for", ASCENDING)],
            limit=OUTREACH_BATCH_SIZE,
        )
        if due:
            logger.info("Processing %d outreach items", len(due))

        for item in due:
            summary.processed += 1
            attempt = int(item.get("attempt_count") or 0) + 1
            try:
                self._process_item(item, attempt)
            except (AgentError, OutreachError) as exc:
                reason = exc.message if isinstance(exc, AgentError) else str(exc)
                logger.error("Error processing outreach %s: %s", item["id"], reason)
                summary.failed += 1
                summary.errors.append(f"{item['id']}: {reason}")
                self.queue.update(
                    item["id"],
                    {
                        "status": "failed" if attempt >= MAX_ATTEMPTS else "pending",
                        "result": {"error": reason, "attempt": attempt},
                    },
                )
                continue
            summary.succeeded += 1

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        return summary

    def _process_item(self, item: Dict[str, Any], attempt: int) -> None:
        self.queue.update(
            item["id"],
            {
                "status": "processing",
                "last_attempt_at": to_iso(utc_now()),
                "attempt_count": attempt,
            },
        )

        prefs = self.users.comm_preferences(item["user_id"])
        if not prefs.exists:
            raise OutreachError(
                "User communication preferences not found - please configure phone in settings"
            )
        if not prefs.phone_number:
            raise OutreachError("User has no phone number configured")

        profile = self.users.profile(item["user_id"])
        context = item.get("context") if isinstance(item.get("context"), dict) else {}
        message = context.get("message") or outreach_message(
            item.get("outreach_type"), outreach_name(profile.email)
        )

        receipt = self.gateway.place_call(prefs.phone_number, message)
        self.queue.update(
            item["id"],
            {
                "status": "completed",
                "completed_at": to_iso(utc_now()),
                "result": {
                    "call_sid": receipt.sid,
                    "status": receipt.status,
                    "to": prefs.phone_number,
                },
            },
        )
        logger.info("Processed outreach %s for user %s", item["id"], item["user_id"])
