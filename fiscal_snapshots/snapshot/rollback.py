"""
Rollback and clone of fiscal books from snapshots.

Rollback is destructive: the book's live transactions are replaced by fresh
copies of the snapshot's transactions and its descriptive fields are
overwritten. Clone is non-destructive: it creates an independent new book.

Rollback protocol (two phases, not one spanning transaction):
    1. Optional safety snapshot of the current state, committed on its own
    2. One transaction: delete live transactions, insert copies, overwrite
       the book's descriptive fields

    A failure in phase 2 rolls back phase 2 only. The safety snapshot stays
    and can be rolled back to manually.

Invariants:
    - The snapshot and its copies are never modified
    - Restored and cloned transactions get fresh ids
    - A cloned book always starts with status "open"
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..errors import NotFoundError
from ..locks import BookLocks
from ..models import BookStatus, CreationSource, FiscalBook, utc_now
from ..store import Database, LedgerStore, SnapshotStore
from .capture import SnapshotCapture

logger = logging.getLogger(__name__)

# Descriptive book fields overwritten from the snapshot on rollback.
RESTORED_FIELDS = (
    "book_name",
    "book_type",
    "book_period",
    "reference",
    "status",
    "fiscal_data",
    "company_id",
    "notes",
    "closed_at",
)

# Descriptive book fields a clone may override.
CLONE_OVERRIDABLE_FIELDS = (
    "book_name",
    "book_type",
    "book_period",
    "reference",
    "fiscal_data",
    "company_id",
    "notes",
)

PRE_ROLLBACK_TAGS = ["pre-rollback", "auto"]


@dataclass
class RollbackResult:
    """Outcome of a rollback.

    Attributes:
        success: Always True when returned (failures raise)
        fiscal_book_id: Book that was rolled back
        restored_from_snapshot: Snapshot the book was restored from
        restored_transaction_count: Live transactions after the rollback
        pre_rollback_snapshot_id: Safety snapshot, if one was taken
    """

    success: bool
    fiscal_book_id: str
    restored_from_snapshot: str
    restored_transaction_count: int
    pre_rollback_snapshot_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "fiscal_book_id": self.fiscal_book_id,
            "restored_from_snapshot": self.restored_from_snapshot,
            "restored_transaction_count": self.restored_transaction_count,
            "pre_rollback_snapshot_id": self.pre_rollback_snapshot_id,
        }


@dataclass
class CloneResult:
    """Outcome of cloning a snapshot into a new book."""

    fiscal_book: FiscalBook
    source_snapshot_id: str
    transaction_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "fiscal_book_id": self.fiscal_book.id,
            "fiscal_book": self.fiscal_book.data.to_dict(),
            "source_snapshot_id": self.source_snapshot_id,
            "transaction_count": self.transaction_count,
        }


class RollbackCoordinator:
    """Restores books from snapshots and clones snapshots into new books.

    Example:
        >>> coordinator = RollbackCoordinator(db, ledger, store, capture, locks)
        >>> result = await coordinator.rollback(snapshot_id)
        >>> result.pre_rollback_snapshot_id is not None
        True
    """

    def __init__(
        self,
        db: Database,
        ledger: LedgerStore,
        store: SnapshotStore,
        capture: SnapshotCapture,
        locks: BookLocks,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.store = store
        self.capture = capture
        self.locks = locks
        self.clock = clock

    async def clone(
        self,
        snapshot_id: str,
        overrides: dict[str, Any] | None = None,
    ) -> CloneResult:
        """Create a new, independent book from a snapshot.

        Args:
            snapshot_id: Source snapshot
            overrides: Descriptive fields replacing the snapshot's values;
                empty or None values are ignored

        Raises:
            NotFoundError: If the snapshot doesn't exist
        """
        snapshot = await self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)

        data = snapshot.fiscal_book_data.copy()
        data.book_name = f"{data.book_name} (Copy)"
        for name, value in (overrides or {}).items():
            if name in CLONE_OVERRIDABLE_FIELDS and value:
                setattr(data, name, value)
        data.status = BookStatus.OPEN.value
        data.created_at = None
        data.updated_at = None
        data.closed_at = None

        with self.db.transaction() as session:
            copies = await self.store.get_snapshot_transactions(snapshot_id, session=session)
            book = await self.ledger.create_book(data, session=session)
            await self.ledger.add_transactions(
                book.id, [st.transaction_data.copy() for st in copies], session=session
            )

        logger.info(
            f"Cloned snapshot {snapshot_id} into fiscal book {book.id}",
            extra={
                "snapshot_id": snapshot_id,
                "fiscal_book_id": book.id,
                "transaction_count": len(copies),
            },
        )
        return CloneResult(
            fiscal_book=book,
            source_snapshot_id=snapshot_id,
            transaction_count=len(copies),
        )

    async def rollback(
        self,
        snapshot_id: str,
        create_pre_rollback_snapshot: bool = True,
    ) -> RollbackResult:
        """Restore a book to the state captured in a snapshot.

        Raises:
            NotFoundError: If the snapshot or its original book doesn't exist
            PersistenceError: If the destructive phase failed; it was rolled back
        """
        snapshot = await self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)

        book_id = snapshot.original_fiscal_book_id
        if await self.ledger.get_book(book_id) is None:
            raise NotFoundError("Original fiscal book not found", "fiscal_book", book_id)

        pre_rollback_snapshot_id = None
        if create_pre_rollback_snapshot:
            pre_rollback = await self.capture.capture(
                book_id,
                name=f"Pre-rollback {self.clock().isoformat()}",
                description=f'Auto-created before rollback to snapshot "{snapshot.snapshot_name}"',
                tags=PRE_ROLLBACK_TAGS,
                creation_source=CreationSource.MANUAL,
            )
            pre_rollback_snapshot_id = pre_rollback.id

        async with self.locks.hold(book_id):
            with self.db.transaction() as session:
                book = await self.ledger.get_book(book_id, session=session)
                if book is None:
                    raise NotFoundError("Original fiscal book not found", "fiscal_book", book_id)

                copies = await self.store.get_snapshot_transactions(snapshot_id, session=session)
                await self.ledger.delete_transactions_for_book(book_id, session=session)
                await self.ledger.add_transactions(
                    book_id, [st.transaction_data.copy() for st in copies], session=session
                )

                data = book.data.copy()
                restored = snapshot.fiscal_book_data.copy()
                for name in RESTORED_FIELDS:
                    setattr(data, name, getattr(restored, name))
                await self.ledger.update_book(book_id, data, session=session)

        logger.warning(
            f"Rolled back fiscal book {book_id} to snapshot {snapshot_id}",
            extra={
                "snapshot_id": snapshot_id,
                "fiscal_book_id": book_id,
                "restored_transaction_count": len(copies),
                "pre_rollback_snapshot_id": pre_rollback_snapshot_id,
            },
        )
        return RollbackResult(
            success=True,
            fiscal_book_id=book_id,
            restored_from_snapshot=snapshot_id,
            restored_transaction_count=len(copies),
            pre_rollback_snapshot_id=pre_rollback_snapshot_id,
        )
