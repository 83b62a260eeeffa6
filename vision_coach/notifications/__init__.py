"""Scheduled check-ins and event notifications."""

from .checkins import CheckinService, template_for_event

__all__ = ["CheckinService", "template_for_event"]
