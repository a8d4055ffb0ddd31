"""
Snapshot capture: freeze a fiscal book and its transactions.

A capture reads the book header and every live transaction, computes the
statistics once and persists the header plus one snapshot transaction per
live transaction, all inside one SQLite transaction.

Invariants:
    - All-or-nothing: either the header and every copy are persisted, or
      nothing is
    - Statistics are computed here and never recomputed afterwards
    - Copies never alias live entities
    - Captures of the same book are serialized in-process via BookLocks
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime

from ..errors import NotFoundError
from ..locks import BookLocks
from ..models import (
    CreationSource,
    FiscalBookSnapshot,
    SnapshotStatistics,
    SnapshotTransaction,
    TransactionData,
    normalize_tags,
    utc_now,
)
from ..monetary import parse_monetary_value
from ..store import Database, LedgerStore, SnapshotStore

logger = logging.getLogger(__name__)

INCOME_TYPE = "credit"


def compute_statistics(items: Iterable[TransactionData]) -> SnapshotStatistics:
    """Aggregate transaction values.

    Credits add to total_income; every other type adds its absolute value
    to total_expenses.
    """
    count = 0
    total_income = 0.0
    total_expenses = 0.0
    for data in items:
        count += 1
        value = parse_monetary_value(data.transaction_value)
        if data.transaction_type == INCOME_TYPE:
            total_income += value
        else:
            total_expenses += abs(value)

    return SnapshotStatistics(
        transaction_count=count,
        total_income=total_income,
        total_expenses=total_expenses,
        net_amount=total_income - total_expenses,
    )


class SnapshotCapture:
    """Creates snapshots of fiscal books.

    Attributes:
        db: Database handle (provides the unit of work)
        ledger: Ledger store for books and live transactions
        store: Snapshot store
        locks: Per-book lock registry
        clock: Source of the current time

    Example:
        >>> capture = SnapshotCapture(db, ledger, store, locks)
        >>> snapshot = await capture.capture(book_id, name="Before audit", tags=["audit"])
        >>> snapshot.statistics.transaction_count
        42
    """

    def __init__(
        self,
        db: Database,
        ledger: LedgerStore,
        store: SnapshotStore,
        locks: BookLocks,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.store = store
        self.locks = locks
        self.clock = clock

    async def capture(
        self,
        book_id: str,
        name: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        creation_source: CreationSource = CreationSource.MANUAL,
    ) -> FiscalBookSnapshot:
        """Capture the current state of a fiscal book.

        Args:
            book_id: Book to capture
            name: Snapshot name (defaults to "Snapshot YYYY-MM-DD")
            description: Optional description
            tags: Tags, normalized before persisting
            creation_source: How the snapshot was triggered

        Returns:
            The created snapshot

        Raises:
            NotFoundError: If the book doesn't exist
            PersistenceError: If the write failed; nothing was persisted
        """
        async with self.locks.hold(book_id):
            with self.db.transaction() as session:
                book = await self.ledger.get_book(book_id, session=session)
                if book is None:
                    raise NotFoundError("Fiscal book not found", "fiscal_book", book_id)

                transactions = await self.ledger.list_transactions(book_id, session=session)
                now = self.clock()

                snapshot = FiscalBookSnapshot(
                    id=str(uuid.uuid4()),
                    original_fiscal_book_id=book_id,
                    snapshot_name=name or f"Snapshot {now.date().isoformat()}",
                    snapshot_description=description,
                    creation_source=creation_source,
                    fiscal_book_data=book.data.copy(),
                    statistics=compute_statistics(tx.data for tx in transactions),
                    created_at=now,
                    tags=normalize_tags(tags),
                )
                await self.store.create_snapshot(snapshot, session=session)

                copies = [
                    SnapshotTransaction(
                        id=str(uuid.uuid4()),
                        snapshot_id=snapshot.id,
                        original_transaction_id=tx.id,
                        transaction_data=tx.data.copy(),
                        copied_at=now,
                    )
                    for tx in transactions
                ]
                if copies:
                    await self.store.create_snapshot_transactions(copies, session=session)

        logger.info(
            f"Captured snapshot {snapshot.id} of fiscal book {book_id}",
            extra={
                "snapshot_id": snapshot.id,
                "fiscal_book_id": book_id,
                "creation_source": creation_source.value,
                "transaction_count": snapshot.statistics.transaction_count,
            },
        )
        return snapshot
