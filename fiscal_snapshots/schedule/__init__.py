"""
Schedule module for the fiscal snapshot engine.

This module handles:
- Next-execution computation for weekly and monthly schedules
- Executing due schedules in an isolated-failure batch
- Snapshots taken right before a book status change

Invariants:
    - The engine never starts a timer; callers drive it
    - Event-triggered schedules have no next_execution_at
"""

from .engine import ExecutedSchedule, ExecutionReport, ScheduleEngine, ScheduleFailure
from .timing import compute_next_execution, next_monthly, next_weekly, sunday_based_weekday

__all__ = [
    "ScheduleEngine",
    "ExecutionReport",
    "ExecutedSchedule",
    "ScheduleFailure",
    "compute_next_execution",
    "next_weekly",
    "next_monthly",
    "sunday_based_weekday",
]
