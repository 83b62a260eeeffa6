"""Logging utilities for the Vision Coach agent."""

from .action_history import fetch_action_history, log_agent_action

__all__ = ["log_agent_action", "fetch_action_history"]
