"""Pending agent actions awaiting user confirmation."""

from .executor import ActionExecutor
from .pending import ActionFeedback, PendingActionService, categorize_rejection

__all__ = ["ActionExecutor", "ActionFeedback", "PendingActionService", "categorize_rejection"]
