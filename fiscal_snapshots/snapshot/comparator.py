"""
Snapshot comparison against the live state of a fiscal book.

Read-only. Transactions are matched by the original transaction id recorded
on each snapshot copy; matching is independent of ordering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError
from ..models import SnapshotStatistics, SnapshotTransaction, Transaction, TransactionData
from ..store import LedgerStore, SnapshotStore
from .capture import compute_statistics

logger = logging.getLogger(__name__)

# Business fields compared between a snapshot copy and its live counterpart.
COMPARED_FIELDS = (
    "transaction_value",
    "transaction_name",
    "transaction_description",
    "transaction_status",
    "transaction_type",
    "transaction_category",
    "payment_method",
)


def _normalized(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass
class FieldChange:
    """One differing field of a modified transaction."""

    field: str
    old_value: str
    new_value: str

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "old_value": self.old_value, "new_value": self.new_value}


@dataclass
class ModifiedTransaction:
    """A transaction present on both sides with at least one differing field.

    Attributes:
        original_transaction_id: Live transaction id
        snapshot_transaction: Copy held by the snapshot
        current_transaction: Live transaction
        changes: Differing fields, in COMPARED_FIELDS order
    """

    original_transaction_id: str
    snapshot_transaction: SnapshotTransaction
    current_transaction: Transaction
    changes: list[FieldChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_transaction_id": self.original_transaction_id,
            "snapshot_transaction": self.snapshot_transaction.to_dict(),
            "current_transaction": {
                "id": self.current_transaction.id,
                **self.current_transaction.data.to_dict(),
            },
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class ComparisonResult:
    """Outcome of comparing a snapshot with the live book.

    Attributes:
        snapshot_id: Compared snapshot
        fiscal_book_id: Book the snapshot was taken from
        added: Live transactions absent from the snapshot
        removed: Snapshot copies whose live transaction no longer exists
        modified: Transactions present on both sides with differences
        unchanged: Snapshot copies identical to their live transaction
        snapshot_statistics: Statistics stored at capture time
        current_statistics: Statistics of the live transactions
    """

    snapshot_id: str
    fiscal_book_id: str
    added: list[Transaction]
    removed: list[SnapshotTransaction]
    modified: list[ModifiedTransaction]
    unchanged: list[SnapshotTransaction]
    snapshot_statistics: SnapshotStatistics
    current_statistics: SnapshotStatistics

    @property
    def counts(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "modified": len(self.modified),
            "unchanged": len(self.unchanged),
        }

    @property
    def differences(self) -> dict[str, float]:
        """Current minus snapshot, per statistic."""
        before = self.snapshot_statistics
        after = self.current_statistics
        return {
            "transaction_count": after.transaction_count - before.transaction_count,
            "total_income": after.total_income - before.total_income,
            "total_expenses": after.total_expenses - before.total_expenses,
            "net_amount": after.net_amount - before.net_amount,
        }

    @property
    def summary(self) -> dict[str, Any]:
        return {
            "snapshot_stats": self.snapshot_statistics.to_dict(),
            "current_stats": self.current_statistics.to_dict(),
            "differences": self.differences,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "fiscal_book_id": self.fiscal_book_id,
            "added": [{"id": tx.id, **tx.data.to_dict()} for tx in self.added],
            "removed": [st.to_dict() for st in self.removed],
            "modified": [m.to_dict() for m in self.modified],
            "unchanged": [st.to_dict() for st in self.unchanged],
            "counts": self.counts,
            "summary": self.summary,
        }


def diff_fields(before: TransactionData, after: TransactionData) -> list[FieldChange]:
    """Compare the business fields of two transaction payloads."""
    changes = []
    for name in COMPARED_FIELDS:
        old_value = _normalized(getattr(before, name))
        new_value = _normalized(getattr(after, name))
        if old_value != new_value:
            changes.append(FieldChange(field=name, old_value=old_value, new_value=new_value))
    return changes


class SnapshotComparator:
    """Compares a snapshot with the live state of its fiscal book.

    Example:
        >>> comparator = SnapshotComparator(ledger, store)
        >>> result = await comparator.compare(snapshot_id)
        >>> result.counts
        {'added': 1, 'removed': 0, 'modified': 2, 'unchanged': 40}
    """

    def __init__(self, ledger: LedgerStore, store: SnapshotStore) -> None:
        self.ledger = ledger
        self.store = store

    async def compare(self, snapshot_id: str) -> ComparisonResult:
        """Compare a snapshot with the current transactions of its book.

        Raises:
            NotFoundError: If the snapshot doesn't exist
        """
        snapshot = await self.store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot not found", "snapshot", snapshot_id)

        book_id = snapshot.original_fiscal_book_id
        copies = await self.store.get_snapshot_transactions(snapshot_id)
        live = await self.ledger.list_transactions(book_id)

        copies_by_original = {
            st.original_transaction_id: st for st in copies if st.original_transaction_id
        }
        live_by_id = {tx.id: tx for tx in live}

        added = [tx for tx in live if tx.id not in copies_by_original]
        removed: list[SnapshotTransaction] = []
        modified: list[ModifiedTransaction] = []
        unchanged: list[SnapshotTransaction] = []

        for st in copies:
            current = live_by_id.get(st.original_transaction_id) if st.original_transaction_id else None
            if current is None:
                removed.append(st)
                continue

            changes = diff_fields(st.transaction_data, current.data)
            if changes:
                modified.append(
                    ModifiedTransaction(
                        original_transaction_id=current.id,
                        snapshot_transaction=st,
                        current_transaction=current,
                        changes=changes,
                    )
                )
            else:
                unchanged.append(st)

        result = ComparisonResult(
            snapshot_id=snapshot_id,
            fiscal_book_id=book_id,
            added=added,
            removed=removed,
            modified=modified,
            unchanged=unchanged,
            snapshot_statistics=snapshot.statistics,
            current_statistics=compute_statistics(tx.data for tx in live),
        )
        logger.debug(
            "Compared snapshot with current state",
            extra={"snapshot_id": snapshot_id, "fiscal_book_id": book_id, **result.counts},
        )
        return result
