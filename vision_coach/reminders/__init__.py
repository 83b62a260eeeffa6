"""Habit reminder scheduling and delivery jobs."""

from .batch import ReminderDispatcher
from .processor import ReminderProcessor
from .scheduler import ReminderScheduler

__all__ = ["ReminderDispatcher", "ReminderProcessor", "ReminderScheduler"]
