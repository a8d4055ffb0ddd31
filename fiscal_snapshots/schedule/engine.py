"""
Schedule engine: automatic snapshots on a calendar or before status changes.

The engine owns no timer. An external caller (the ``fiscal-snapshots
run-due`` command, a cron entry or an admin action) invokes execute_due.

Schedule states:
    disabled         - never executes
    enabled-weekly   - executes on a weekday, next_execution_at set
    enabled-monthly  - executes on a day of month, next_execution_at set
    enabled-event    - executes only before a book status change

Invariants:
    - One schedule failing never stops the others in the same batch
    - next_execution_at is None for event schedules, otherwise strictly
      after the time it was computed at
    - create_before_status_change_snapshot never raises
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..models import (
    CreationSource,
    FiscalBookSnapshot,
    ScheduleFrequency,
    SnapshotSchedule,
    format_timestamp,
    utc_now,
)
from ..snapshot import RetentionManager, SnapshotCapture
from ..store import SnapshotStore
from .timing import compute_next_execution

logger = logging.getLogger(__name__)

DEFAULT_AUTO_TAGS = ["auto"]
STATUS_CHANGE_TAG = "before-status-change"


@dataclass
class ExecutedSchedule:
    """A schedule that executed successfully."""

    fiscal_book_id: str
    snapshot_id: str
    next_execution_at: datetime | None
    deleted_by_retention: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "fiscal_book_id": self.fiscal_book_id,
            "snapshot_id": self.snapshot_id,
            "next_execution_at": format_timestamp(self.next_execution_at),
            "deleted_by_retention": self.deleted_by_retention,
        }


@dataclass
class ScheduleFailure:
    """A schedule that failed to execute."""

    fiscal_book_id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"fiscal_book_id": self.fiscal_book_id, "error": self.error}


@dataclass
class ExecutionReport:
    """Result of one execute_due batch.

    Attributes:
        executed: Schedules that produced a snapshot
        errors: Schedules that failed, with the error message
    """

    executed: list[ExecutedSchedule] = field(default_factory=list)
    errors: list[ScheduleFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "executed": [e.to_dict() for e in self.executed],
            "errors": [e.to_dict() for e in self.errors],
        }


class ScheduleEngine:
    """Runs due schedules and status-change snapshots.

    Example:
        >>> engine = ScheduleEngine(store, capture, retention)
        >>> report = await engine.execute_due()
        >>> len(report.executed), len(report.errors)
        (3, 0)
    """

    def __init__(
        self,
        store: SnapshotStore,
        capture: SnapshotCapture,
        retention: RetentionManager,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.capture = capture
        self.retention = retention
        self.clock = clock

    async def execute_due(self, now: datetime | None = None) -> ExecutionReport:
        """Execute every enabled schedule whose next_execution_at <= now.

        Args:
            now: Reference time (defaults to the engine clock)

        Returns:
            ExecutionReport with per-schedule outcomes
        """
        now = now or self.clock()
        report = ExecutionReport()

        due = await self.store.find_due_schedules(now)
        if due:
            logger.info(f"Executing {len(due)} due snapshot schedule(s)")

        for schedule in due:
            try:
                report.executed.append(await self._execute(schedule, now))
            except Exception as e:
                logger.error(
                    f"Error executing schedule for fiscal book {schedule.fiscal_book_id}: {e}",
                    exc_info=True,
                    extra={"fiscal_book_id": schedule.fiscal_book_id},
                )
                report.errors.append(
                    ScheduleFailure(fiscal_book_id=schedule.fiscal_book_id, error=str(e))
                )

        return report

    async def _execute(self, schedule: SnapshotSchedule, now: datetime) -> ExecutedSchedule:
        book_id = schedule.fiscal_book_id
        snapshot = await self.capture.capture(
            book_id,
            name=f"Automatic snapshot {now.date().isoformat()}",
            description=f"Automatic snapshot created by {schedule.frequency.value} schedule",
            tags=schedule.auto_tags or DEFAULT_AUTO_TAGS,
            creation_source=CreationSource.SCHEDULED,
        )

        next_execution_at = compute_next_execution(
            schedule.frequency, now, schedule.day_of_week, schedule.day_of_month
        )
        await self.store.update_schedule_execution(book_id, now, next_execution_at)
        deleted = await self.retention.cleanup(book_id, schedule.retention_count)

        return ExecutedSchedule(
            fiscal_book_id=book_id,
            snapshot_id=snapshot.id,
            next_execution_at=next_execution_at,
            deleted_by_retention=deleted,
        )

    async def create_before_status_change_snapshot(
        self,
        book_id: str,
        new_status: str,
    ) -> FiscalBookSnapshot | None:
        """Snapshot a book before its status changes, if its schedule asks for it.

        Returns None when the book has no enabled before-status-change
        schedule, and also when anything fails; the status change itself
        must never be blocked by this.
        """
        try:
            schedule = await self.store.get_schedule(book_id)
            if (
                schedule is None
                or not schedule.enabled
                or schedule.frequency is not ScheduleFrequency.BEFORE_STATUS_CHANGE
            ):
                return None

            now = self.clock()
            snapshot = await self.capture.capture(
                book_id,
                name=f"Before {new_status} - {now.date().isoformat()}",
                description=f"Automatic snapshot created before status change to {new_status}",
                tags=[*(schedule.auto_tags or DEFAULT_AUTO_TAGS), STATUS_CHANGE_TAG],
                creation_source=CreationSource.BEFORE_STATUS_CHANGE,
            )
            await self.store.update_schedule_execution(book_id, now, None)
            await self.retention.cleanup(book_id, schedule.retention_count)
            return snapshot
        except Exception as e:
            logger.error(
                f"Error creating before-status-change snapshot: {e}",
                exc_info=True,
                extra={"fiscal_book_id": book_id, "new_status": new_status},
            )
            return None
