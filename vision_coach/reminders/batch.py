"""Dispatcher for generic ``scheduled_reminders``.

Meant to run every minute from cron. Each pass takes the oldest due
reminders, renders their message and sends them over SMS. Push and email
reminders in this collection are not delivered yet and fail with an
explanatory error.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..comms.telephony import TwilioGateway
from ..errors import AgentError
from ..messages import batch_reminder_message
from ..store import ASCENDING, SCHEDULED_REMINDERS, RecordStore
from ..timeutil import to_iso, utc_now
from ..users import UserDirectory

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 100


@dataclass(slots=True)
class DispatchSummary:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": True,
            "processed": self.processed,
            "sent": self.sent,
            "failed": self.failed,
            "errors": self.errors,
        }
        if not self.processed:
            data["message"] = "No pending reminders to process"
        return data


def clamp_batch_size(batch_size: Optional[int]) -> int:
    if not batch_size or batch_size <= 0:
        return DEFAULT_BATCH_SIZE
    return min(batch_size, MAX_BATCH_SIZE)


class ReminderDispatcher:
    def __init__(
        self,
        *,
        gateway: Optional[TwilioGateway] = None,
        users: Optional[UserDirectory] = None,
        reminders: Optional[RecordStore] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.gateway = gateway or TwilioGateway()
        self.users = users or UserDirectory()
        self.reminders = reminders or RecordStore(SCHEDULED_REMINDERS)
        self.rng = rng

    def run(
        self,
        *,
        batch_size: Optional[int] = None,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> DispatchSummary:
        now = now or utc_now()
        summary = DispatchSummary()
        pending = self.reminders.query(
            [("status", "==", "pending"), ("scheduled_for", "<=", to_iso(now))],
            order_by=[("scheduled_for", ASCENDING)],
            limit=clamp_batch_size(batch_size),
        )
        if not pending:
            return summary

        logger.info("Processing %d pending reminders", len(pending))
        for reminder in pending:
            summary.processed += 1
            try:
                error = self._dispatch(reminder, dry_run)
            except AgentError as exc:
                logger.error("Error processing reminder %s: %s", reminder["id"], exc.message)
                summary.failed += 1
                summary.errors.append(f"{reminder['id']}: {exc.message}")
                self.reminders.update(
                    reminder["id"],
                    {
                        "status": "failed",
                        "error_message": exc.message,
                        "updated_at": to_iso(utc_now()),
                    },
                )
                continue

            stamp = to_iso(utc_now())
            self.reminders.update(
                reminder["id"],
                {
                    "status": "failed" if error else "sent",
                    "sent_at": None if error else stamp,
                    "error_message": error,
                    "updated_at": stamp,
                },
            )
            if error:
                summary.failed += 1
                summary.errors.append(f"{reminder['id']}: {error}")
            else:
                summary.sent += 1

        logger.info("Scheduler complete: %d sent, %d failed", summary.sent, summary.failed)
        return summary

    def render(self, reminder: Dict[str, Any]) -> str:
        """Stored message with ``{firstName}`` filled in, or a default."""
        first_name = self.users.profile(reminder["user_id"]).first_name
        message = reminder.get("message")
        if not message:
            return batch_reminder_message(reminder.get("reminder_type"), first_name, self.rng)
        return message.replace("{firstName}", first_name, 1)

    def _dispatch(self, reminder: Dict[str, Any], dry_run: bool) -> Optional[str]:
        """Deliver one reminder; returns an error message or None."""
        message = self.render(reminder)
        if dry_run:
            logger.info("[DRY RUN] Would send to %s: %s", reminder["user_id"], message)
            return None

        channel = reminder.get("channel")
        prefs = self.users.comm_preferences(reminder["user_id"])
        if channel == "sms" and prefs.phone_number and self.gateway.configured:
            if prefs.sms_enabled is False:
                return "User has SMS disabled"
            self.gateway.send_sms(prefs.phone_number, message)
            logger.info("SMS sent for reminder %s", reminder["id"])
            return None
        if channel == "push":
            return "Push notifications not yet implemented"
        if channel == "email":
            return "Email notifications not yet implemented"
        return "No valid communication channel available"
