"""Queued voice outreach."""

from .queue import OutreachError, OutreachProcessor

__all__ = ["OutreachError", "OutreachProcessor"]
