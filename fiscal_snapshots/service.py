"""
Snapshot service: the operation surface of the engine.

One method per external operation. Arguments are validated through the
request models; every failure surfaces as a SnapshotError subclass carrying
the status code a transport layer should answer with:

    NotFoundError           404
    ProtectedResourceError  400
    ValidationError         400
    PersistenceError        500

Invariants:
    - Methods never return raw sqlite3 or pydantic errors
    - Listing page sizes are bounded by SnapshotConfig.max_page_size
    - A status change proceeds even if its pre-change snapshot failed
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import SnapshotConfig
from .errors import NotFoundError, ValidationError
from .locks import BookLocks
from .models import (
    Annotation,
    BookStatus,
    FiscalBook,
    FiscalBookSnapshot,
    SnapshotSchedule,
    SnapshotTransaction,
    utc_now,
)
from .requests import (
    AnnotationRequest,
    CloneOverrides,
    CreateSnapshotRequest,
    PageRequest,
    RollbackRequest,
    ScheduleUpdateRequest,
    SnapshotListQuery,
    SnapshotMetadataUpdate,
)
from .schedule import ExecutionReport, ScheduleEngine, compute_next_execution
from .snapshot import (
    CloneResult,
    ComparisonResult,
    ExportResult,
    RetentionManager,
    RollbackCoordinator,
    RollbackResult,
    SnapshotCapture,
    SnapshotComparator,
    SnapshotExporter,
)
from .store import Database, LedgerStore, Page, SnapshotStore

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


def parse_request(model: type[RequestT], data: Any) -> RequestT:
    """Validate a request payload, raising ValidationError on failure."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = e.errors()
        field_name = ".".join(str(part) for part in errors[0]["loc"]) if errors[0]["loc"] else None
        messages = [err["msg"] for err in errors]
        raise ValidationError(
            f"Invalid {model.__name__}: {'; '.join(messages)}",
            field_name=field_name,
            errors=messages,
        ) from e


class SnapshotService:
    """Facade over capture, comparison, scheduling, retention and rollback.

    Attributes:
        db: Database handle
        ledger: Ledger store (books and live transactions)
        store: Snapshot store
        config: Snapshot behaviour defaults

    Example:
        >>> service = SnapshotService(db)
        >>> snapshot = await service.create_snapshot(book_id, name="Month end")
        >>> page = await service.list_snapshots(book_id, tags=["audit"])
    """

    def __init__(
        self,
        db: Database,
        config: SnapshotConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.config = config or SnapshotConfig()
        self.clock = clock

        self.locks = BookLocks()
        self.ledger = LedgerStore(db)
        self.store = SnapshotStore(db)
        self.capture = SnapshotCapture(db, self.ledger, self.store, self.locks, clock=clock)
        self.comparator = SnapshotComparator(self.ledger, self.store)
        self.retention = RetentionManager(self.store, self.locks)
        self.engine = ScheduleEngine(self.store, self.capture, self.retention, clock=clock)
        self.rollback = RollbackCoordinator(
            db, self.ledger, self.store, self.capture, self.locks, clock=clock
        )
        self.exporter = SnapshotExporter(self.store)

    # ----- Snapshots -----

    async def create_snapshot(
        self,
        book_id: str,
        name: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> FiscalBookSnapshot:
        """Capture a manual snapshot of a book."""
        request = parse_request(
            CreateSnapshotRequest,
            {"name": name, "description": description, "tags": tags if tags is not None else []},
        )
        return await self.capture.capture(
            book_id,
            name=request.name,
            description=request.description,
            tags=request.tags,
        )

    async def list_snapshots(
        self,
        book_id: str,
        tags: list[str] | None = None,
        limit: int | None = None,
        skip: int = 0,
    ) -> Page:
        """Snapshots of a book, newest first; tags filter is AND-match.

        Raises:
            ValidationError: If tags is neither a list of strings nor a
                comma-separated string
        """
        tags = parse_request(SnapshotListQuery, {"tags": tags}).tags
        page = self._page(limit, skip)
        items = await self.store.list_snapshots(book_id, tags=tags, limit=page.limit, skip=page.skip)
        total = await self.store.count_snapshots(book_id, tags=tags)
        return Page(items=items, total=total, limit=page.limit, skip=page.skip)

    async def get_snapshot(self, snapshot_id: str) -> FiscalBookSnapshot:
        return await self._require_snapshot(snapshot_id)

    async def delete_snapshot(self, snapshot_id: str) -> FiscalBookSnapshot:
        """Delete a snapshot and its transaction copies.

        Returns:
            The deleted snapshot header

        Raises:
            NotFoundError: If the snapshot doesn't exist
            ProtectedResourceError: If the snapshot is protected
        """
        snapshot = await self._require_snapshot(snapshot_id)
        if not await self.store.delete_snapshot(snapshot_id):
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)
        logger.info(
            f"Deleted snapshot {snapshot_id}",
            extra={"snapshot_id": snapshot_id, "fiscal_book_id": snapshot.original_fiscal_book_id},
        )
        return snapshot

    async def delete_snapshots_for_book(self, book_id: str) -> int:
        """Delete every snapshot of a book and its schedule in one unit.

        Raises:
            ProtectedResourceError: If any snapshot of the book is protected
        """
        with self.db.transaction() as session:
            deleted = await self.store.delete_snapshots_for_book(book_id, session=session)
            await self.store.delete_schedule(book_id, session=session)

        logger.info(
            f"Deleted {deleted} snapshot(s) of fiscal book {book_id}",
            extra={"fiscal_book_id": book_id, "deleted": deleted},
        )
        return deleted

    async def list_snapshot_transactions(
        self,
        snapshot_id: str,
        limit: int | None = None,
        skip: int = 0,
    ) -> Page:
        """Transaction copies of a snapshot, most recent transaction date first."""
        await self._require_snapshot(snapshot_id)
        page = self._page(limit, skip)
        items = await self.store.get_snapshot_transactions(
            snapshot_id, limit=page.limit, skip=page.skip
        )
        total = await self.store.count_snapshot_transactions(snapshot_id)
        return Page(items=items, total=total, limit=page.limit, skip=page.skip)

    async def compare_snapshot(self, snapshot_id: str) -> ComparisonResult:
        return await self.comparator.compare(snapshot_id)

    async def update_tags(self, snapshot_id: str, tags: Any) -> FiscalBookSnapshot:
        """Replace a snapshot's tags.

        Raises:
            ValidationError: If tags is not a list of strings
        """
        if not isinstance(tags, list):
            raise ValidationError("Tags must be an array", field_name="tags")
        request = parse_request(SnapshotMetadataUpdate, {"tags": tags})

        snapshot = await self.store.update_tags(snapshot_id, request.tags or [])
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)
        return snapshot

    async def set_protection(self, snapshot_id: str, is_protected: Any) -> FiscalBookSnapshot:
        """Set or clear the protection flag.

        Raises:
            ValidationError: If is_protected is not a boolean
        """
        if not isinstance(is_protected, bool):
            raise ValidationError("is_protected must be a boolean", field_name="is_protected")
        request = parse_request(SnapshotMetadataUpdate, {"is_protected": is_protected})

        snapshot = await self.store.set_protection(snapshot_id, bool(request.is_protected))
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)
        return snapshot

    async def add_annotation(
        self,
        snapshot_id: str,
        content: Any,
        created_by: str = "system",
    ) -> FiscalBookSnapshot:
        """Append an annotation to a snapshot.

        Raises:
            ValidationError: If content is missing or blank
        """
        request = parse_request(AnnotationRequest, {"content": content, "created_by": created_by})
        annotation = Annotation(
            content=request.content, created_by=request.created_by, created_at=self.clock()
        )
        snapshot = await self.store.add_annotation(snapshot_id, annotation)
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)
        return snapshot

    async def add_transaction_annotation(
        self,
        snapshot_transaction_id: str,
        content: Any,
        created_by: str = "system",
    ) -> SnapshotTransaction:
        """Append an annotation to one snapshot transaction copy."""
        request = parse_request(AnnotationRequest, {"content": content, "created_by": created_by})
        annotation = Annotation(
            content=request.content, created_by=request.created_by, created_at=self.clock()
        )
        transaction = await self.store.add_transaction_annotation(
            snapshot_transaction_id, annotation
        )
        if transaction is None:
            raise NotFoundError(
                "Snapshot transaction not found", "snapshot_transaction", snapshot_transaction_id
            )
        return transaction

    async def export_snapshot(self, snapshot_id: str, format: str = "json") -> ExportResult:
        return await self.exporter.export(snapshot_id, format)

    async def clone_snapshot(
        self,
        snapshot_id: str,
        overrides: CloneOverrides | dict[str, Any] | None = None,
    ) -> CloneResult:
        """Create a new independent book from a snapshot."""
        request = parse_request(CloneOverrides, overrides or {})
        return await self.rollback.clone(snapshot_id, request.model_dump(exclude_none=True))

    async def rollback_snapshot(
        self,
        snapshot_id: str,
        create_pre_rollback_snapshot: bool | None = None,
    ) -> RollbackResult:
        """Restore the snapshot's book to the captured state (destructive)."""
        request = parse_request(
            RollbackRequest, {"create_pre_rollback_snapshot": create_pre_rollback_snapshot}
        )
        create = request.create_pre_rollback_snapshot
        if create is None:
            create = self.config.pre_rollback_default
        return await self.rollback.rollback(snapshot_id, create_pre_rollback_snapshot=create)

    # ----- Schedules -----

    async def get_schedule(self, book_id: str) -> SnapshotSchedule | None:
        return await self.store.get_schedule(book_id)

    async def update_schedule(
        self,
        book_id: str,
        config: ScheduleUpdateRequest | dict[str, Any],
    ) -> SnapshotSchedule:
        """Create or replace the schedule of a book.

        Raises:
            NotFoundError: If the book doesn't exist
            ValidationError: If the configuration is invalid
        """
        request = parse_request(ScheduleUpdateRequest, config)
        if await self.ledger.get_book(book_id) is None:
            raise NotFoundError("Fiscal book not found", "fiscal_book", book_id)

        existing = await self.store.get_schedule(book_id)
        day_of_month = request.day_of_month or 1
        schedule = SnapshotSchedule(
            fiscal_book_id=book_id,
            enabled=request.enabled,
            frequency=request.frequency,
            day_of_week=request.day_of_week,
            day_of_month=day_of_month,
            retention_count=request.retention_count or self.config.default_retention_count,
            auto_tags=request.auto_tags or list(self.config.default_auto_tags),
            last_executed_at=existing.last_executed_at if existing else None,
            next_execution_at=compute_next_execution(
                request.frequency, self.clock(), request.day_of_week, day_of_month
            ),
            created_at=existing.created_at if existing else None,
        )
        saved = await self.store.save_schedule(schedule)
        logger.info(
            f"Updated snapshot schedule of fiscal book {book_id}",
            extra={"fiscal_book_id": book_id, "state": saved.state},
        )
        return saved

    async def disable_schedule(self, book_id: str) -> SnapshotSchedule:
        """Disable a book's schedule, creating a disabled one if none exists."""
        schedule = await self.store.get_schedule(book_id)
        if schedule is None:
            schedule = SnapshotSchedule(
                fiscal_book_id=book_id,
                retention_count=self.config.default_retention_count,
                auto_tags=list(self.config.default_auto_tags),
            )
        schedule.enabled = False
        return await self.store.save_schedule(schedule)

    async def execute_due(self, now: datetime | None = None) -> ExecutionReport:
        return await self.engine.execute_due(now)

    async def trigger_scheduled_snapshots(self) -> dict[str, Any]:
        """Run due schedules once and summarize the batch."""
        report = await self.engine.execute_due()
        logger.info(
            f"Scheduled snapshots: {len(report.executed)} executed, {len(report.errors)} errors"
        )
        return {
            "success": True,
            "executed": len(report.executed),
            "errors": len(report.errors),
            "details": report.to_dict(),
        }

    async def cleanup_snapshots(self, book_id: str, retention_count: int | None = None) -> int:
        """Apply the retention policy to a book's scheduled snapshots."""
        if retention_count is None:
            retention_count = self.config.default_retention_count
        return await self.retention.cleanup(book_id, retention_count)

    # ----- Book status -----

    async def change_book_status(self, book_id: str, new_status: str) -> FiscalBook:
        """Change a book's status, snapshotting first if its schedule asks for it.

        The status change proceeds even if the snapshot attempt failed.

        Raises:
            NotFoundError: If the book doesn't exist
        """
        book = await self.ledger.get_book(book_id)
        if book is None:
            raise NotFoundError("Fiscal book not found", "fiscal_book", book_id)

        await self.engine.create_before_status_change_snapshot(book_id, new_status)

        data = book.data.copy()
        data.status = new_status
        if new_status == BookStatus.CLOSED.value:
            data.closed_at = self.clock()
        updated = await self.ledger.update_book(book_id, data)
        if updated is None:
            raise NotFoundError("Fiscal book not found", "fiscal_book", book_id)
        return updated

    # ----- Helpers -----

    def _page(self, limit: int | None, skip: int) -> PageRequest:
        page = parse_request(PageRequest, {"limit": limit, "skip": skip})
        page.limit = min(page.limit or self.config.page_size, self.config.max_page_size)
        return page

    async def _require_snapshot(self, snapshot_id: str) -> FiscalBookSnapshot:
        snapshot = await self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)
        return snapshot
