"""
Integration tests for the schedule engine.

Tests cover:
- Executing due schedules and rescheduling
- Per-schedule failure isolation
- Retention after scheduled runs
- Before-status-change snapshots and the status change hook
"""

from datetime import datetime, timedelta, timezone

import pytest

from fiscal_snapshots.errors import NotFoundError
from fiscal_snapshots.models import CreationSource, ScheduleFrequency, SnapshotSchedule


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestExecuteDue:
    """Tests for ScheduleEngine.execute_due."""

    @pytest.mark.asyncio
    async def test_executes_due_weekly_schedule(self, service, store, make_book, clock):
        book, _ = await make_book([{"transaction_value": "10"}])
        schedule = await service.update_schedule(book.id, {"frequency": "weekly", "day_of_week": 1})
        assert schedule.next_execution_at == utc(2024, 3, 18)

        now = clock.advance(days=3)
        report = await service.engine.execute_due(now)

        assert len(report.executed) == 1
        assert report.errors == []
        executed = report.executed[0]
        assert executed.fiscal_book_id == book.id
        assert executed.next_execution_at == utc(2024, 3, 25)

        snapshot = await store.get_snapshot(executed.snapshot_id)
        assert snapshot.creation_source is CreationSource.SCHEDULED
        assert snapshot.tags == ["auto"]
        assert snapshot.snapshot_name == "Automatic snapshot 2024-03-18"
        assert "weekly" in snapshot.snapshot_description

        updated = await store.get_schedule(book.id)
        assert updated.last_executed_at == now
        assert updated.next_execution_at == utc(2024, 3, 25)

    @pytest.mark.asyncio
    async def test_not_yet_due(self, service, make_book, clock):
        book, _ = await make_book()
        await service.update_schedule(book.id, {"frequency": "monthly", "day_of_month": 20})

        report = await service.engine.execute_due(clock.now)

        assert report.executed == []
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_disabled_and_event_schedules_never_run(self, service, make_book, clock):
        book, _ = await make_book()
        other, _ = await make_book(book_name="Other")
        await service.update_schedule(book.id, {"enabled": False, "frequency": "monthly"})
        await service.update_schedule(other.id, {"frequency": "before-status-change"})

        report = await service.engine.execute_due(clock.advance(days=400))

        assert report.executed == []

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, service, store, make_book, clock):
        """One failing schedule doesn't stop the batch."""
        book, _ = await make_book([{"transaction_value": "10"}])
        await service.update_schedule(book.id, {"frequency": "weekly", "day_of_week": 1})
        await store.save_schedule(
            SnapshotSchedule(
                "missing-book",
                enabled=True,
                frequency=ScheduleFrequency.WEEKLY,
                day_of_week=1,
                next_execution_at=utc(2024, 3, 16),
            )
        )

        report = await service.engine.execute_due(clock.advance(days=3))

        assert [e.fiscal_book_id for e in report.executed] == [book.id]
        assert [e.fiscal_book_id for e in report.errors] == ["missing-book"]
        assert "not found" in report.errors[0].error.lower()

    @pytest.mark.asyncio
    async def test_retention_after_run(self, service, store, make_book, clock):
        book, _ = await make_book()
        await service.update_schedule(
            book.id, {"frequency": "weekly", "day_of_week": 1, "retention_count": 1}
        )

        clock.advance(days=3)
        first = await service.engine.execute_due()
        clock.advance(days=7)
        second = await service.engine.execute_due()

        assert second.executed[0].deleted_by_retention == 1
        remaining = await store.list_snapshots(book.id)
        assert [s.id for s in remaining] == [second.executed[0].snapshot_id]
        assert first.executed[0].snapshot_id != second.executed[0].snapshot_id

    @pytest.mark.asyncio
    async def test_custom_auto_tags(self, service, store, make_book, clock):
        book, _ = await make_book()
        await service.update_schedule(
            book.id, {"frequency": "monthly", "day_of_month": 16, "auto_tags": ["Nightly", "auto"]}
        )

        report = await service.engine.execute_due(clock.advance(days=1))

        snapshot = await store.get_snapshot(report.executed[0].snapshot_id)
        assert snapshot.tags == ["nightly", "auto"]

    @pytest.mark.asyncio
    async def test_trigger_summary(self, service, make_book, clock):
        book, _ = await make_book()
        await service.update_schedule(book.id, {"frequency": "weekly", "day_of_week": 6})
        clock.advance(days=1)

        summary = await service.trigger_scheduled_snapshots()

        assert summary["success"] is True
        assert summary["executed"] == 1
        assert summary["errors"] == 0
        assert summary["details"]["executed"][0]["fiscal_book_id"] == book.id


class TestBeforeStatusChange:
    """Tests for create_before_status_change_snapshot."""

    @pytest.mark.asyncio
    async def test_no_schedule(self, service, make_book):
        book, _ = await make_book()
        assert await service.engine.create_before_status_change_snapshot(book.id, "closed") is None

    @pytest.mark.asyncio
    async def test_calendar_schedule_is_ignored(self, service, make_book):
        book, _ = await make_book()
        await service.update_schedule(book.id, {"frequency": "monthly"})
        assert await service.engine.create_before_status_change_snapshot(book.id, "closed") is None

    @pytest.mark.asyncio
    async def test_disabled_event_schedule(self, service, make_book):
        book, _ = await make_book()
        await service.update_schedule(
            book.id, {"frequency": "before-status-change", "enabled": False}
        )
        assert await service.engine.create_before_status_change_snapshot(book.id, "closed") is None

    @pytest.mark.asyncio
    async def test_creates_snapshot(self, service, store, make_book, clock):
        book, _ = await make_book([{"transaction_value": "10"}])
        await service.update_schedule(book.id, {"frequency": "before-status-change"})

        snapshot = await service.engine.create_before_status_change_snapshot(book.id, "closed")

        assert snapshot is not None
        assert snapshot.creation_source is CreationSource.BEFORE_STATUS_CHANGE
        assert snapshot.tags == ["auto", "before-status-change"]
        assert snapshot.snapshot_name == "Before closed - 2024-03-15"

        schedule = await store.get_schedule(book.id)
        assert schedule.last_executed_at == clock.now
        assert schedule.next_execution_at is None

    @pytest.mark.asyncio
    async def test_runs_retention_and_survives_it(
        self, service, store, make_book, clock, monkeypatch
    ):
        """The hook prunes scheduled snapshots but never its own."""
        book, _ = await make_book()
        scheduled = []
        for _ in range(4):
            scheduled.append(
                await service.capture.capture(book.id, creation_source=CreationSource.SCHEDULED)
            )
            clock.advance(days=1)
        await service.update_schedule(
            book.id, {"frequency": "before-status-change", "retention_count": 2}
        )

        pruned = []
        real_cleanup = service.retention.cleanup

        async def counting_cleanup(book_id, retention_count=12):
            pruned.append(await real_cleanup(book_id, retention_count))
            return pruned[-1]

        monkeypatch.setattr(service.retention, "cleanup", counting_cleanup)

        snapshot = await service.engine.create_before_status_change_snapshot(book.id, "closed")

        remaining = {s.id for s in await store.list_snapshots(book.id)}
        assert pruned == [2]
        assert remaining == {snapshot.id, scheduled[2].id, scheduled[3].id}

        again = await service.engine.create_before_status_change_snapshot(book.id, "archived")
        remaining = {s.id for s in await store.list_snapshots(book.id)}
        assert {snapshot.id, again.id} <= remaining
        assert pruned == [2, 0]
        assert len(remaining) == 4

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, service, store):
        """Internal failures are logged, never raised."""
        await store.save_schedule(
            SnapshotSchedule(
                "missing-book", enabled=True, frequency=ScheduleFrequency.BEFORE_STATUS_CHANGE
            )
        )
        assert (
            await service.engine.create_before_status_change_snapshot("missing-book", "closed")
            is None
        )


class TestChangeBookStatus:
    """Tests for the status-change hook."""

    @pytest.mark.asyncio
    async def test_snapshot_then_status(self, service, ledger, store, make_book, clock):
        book, _ = await make_book([{"transaction_value": "10"}])
        await service.update_schedule(book.id, {"frequency": "before-status-change"})

        updated = await service.change_book_status(book.id, "closed")

        assert updated.status == "closed"
        assert updated.data.closed_at == clock.now
        snapshots = await store.list_snapshots(book.id)
        assert len(snapshots) == 1
        assert snapshots[0].fiscal_book_data.status == "open"

    @pytest.mark.asyncio
    async def test_status_changes_even_if_snapshot_fails(
        self, service, ledger, make_book, monkeypatch
    ):
        book, _ = await make_book()
        await service.update_schedule(book.id, {"frequency": "before-status-change"})

        async def failing_capture(*args, **kwargs):
            raise RuntimeError("capture failed")

        monkeypatch.setattr(service.capture, "capture", failing_capture)

        updated = await service.change_book_status(book.id, "in-review")

        assert updated.status == "in-review"
        assert (await ledger.get_book(book.id)).status == "in-review"

    @pytest.mark.asyncio
    async def test_missing_book(self, service):
        with pytest.raises(NotFoundError):
            await service.change_book_status("missing", "closed")


class TestTimingInvariant:
    """next_execution_at is always after the moment it was computed at."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("day_of_week", range(7))
    async def test_weekly_in_future(self, service, make_book, clock, day_of_week):
        book, _ = await make_book()
        schedule = await service.update_schedule(
            book.id, {"frequency": "weekly", "day_of_week": day_of_week}
        )
        assert clock.now < schedule.next_execution_at <= clock.now + timedelta(days=7)
