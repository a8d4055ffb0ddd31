"""
Integration tests for rollback and clone.

Tests cover:
- Rollback restores transactions and descriptive fields
- Pre-rollback safety snapshots
- Two-phase failure behaviour
- Clone independence
"""

import pytest

from fiscal_snapshots.errors import NotFoundError, PersistenceError
from fiscal_snapshots.models import TransactionData

TRANSACTIONS = [
    {"transaction_value": "100", "transaction_type": "credit", "transaction_name": "Sale"},
    {"transaction_value": "50", "transaction_type": "debit", "transaction_name": "Rent"},
    {"transaction_value": "20", "transaction_type": "debit", "transaction_name": "Fuel"},
]


class TestRollback:
    """Tests for RollbackCoordinator.rollback."""

    @pytest.fixture
    async def drifted(self, service, ledger, make_book):
        """A book captured and then changed: one deleted, two added, renamed."""
        book, live = await make_book(TRANSACTIONS, notes="original")
        snapshot = await service.capture.capture(book.id, name="Month end")

        await ledger.delete_transaction(live[0].id)
        await ledger.add_transactions(
            book.id,
            [TransactionData(transaction_value="1"), TransactionData(transaction_value="2")],
        )
        data = book.data.copy()
        data.book_name = "Renamed"
        data.notes = "edited"
        data.status = "closed"
        await ledger.update_book(book.id, data)
        return book, live, snapshot

    @pytest.mark.asyncio
    async def test_restores_count_and_fields(self, service, ledger, drifted):
        book, live, snapshot = drifted

        result = await service.rollback.rollback(snapshot.id)

        assert result.success is True
        assert result.fiscal_book_id == book.id
        assert result.restored_from_snapshot == snapshot.id
        assert result.restored_transaction_count == 3
        assert await ledger.count_transactions(book.id) == 3

        restored = await ledger.get_book(book.id)
        assert restored.data.book_name == "January 2024"
        assert restored.data.notes == "original"
        assert restored.status == "open"

        names = sorted(tx.data.transaction_name for tx in await ledger.list_transactions(book.id))
        assert names == ["Fuel", "Rent", "Sale"]

    @pytest.mark.asyncio
    async def test_restored_transactions_get_fresh_ids(self, service, ledger, drifted):
        book, live, snapshot = drifted

        await service.rollback.rollback(snapshot.id)

        restored_ids = {tx.id for tx in await ledger.list_transactions(book.id)}
        assert restored_ids.isdisjoint({tx.id for tx in live})

    @pytest.mark.asyncio
    async def test_pre_rollback_snapshot(self, service, store, drifted):
        book, _, snapshot = drifted

        result = await service.rollback.rollback(snapshot.id)

        pre = await store.get_snapshot(result.pre_rollback_snapshot_id)
        assert pre.tags == ["pre-rollback", "auto"]
        assert pre.statistics.transaction_count == 4
        assert pre.fiscal_book_data.book_name == "Renamed"
        assert pre.snapshot_name.startswith("Pre-rollback ")
        assert pre.snapshot_description == 'Auto-created before rollback to snapshot "Month end"'

    @pytest.mark.asyncio
    async def test_without_pre_rollback_snapshot(self, service, store, drifted):
        book, _, snapshot = drifted

        result = await service.rollback.rollback(snapshot.id, create_pre_rollback_snapshot=False)

        assert result.pre_rollback_snapshot_id is None
        assert await store.count_snapshots(book.id) == 1

    @pytest.mark.asyncio
    async def test_snapshot_untouched(self, service, store, drifted):
        _, _, snapshot = drifted

        await service.rollback.rollback(snapshot.id)

        assert await store.count_snapshot_transactions(snapshot.id) == 3
        assert (await store.get_snapshot(snapshot.id)).statistics == snapshot.statistics

    @pytest.mark.asyncio
    async def test_destructive_phase_failure(self, service, ledger, store, drifted, monkeypatch):
        """A failure after the safety snapshot rolls back the destructive phase only."""
        book, _, snapshot = drifted

        async def failing_insert(book_id, items, session=None):
            raise PersistenceError("disk full", operation="insert")

        monkeypatch.setattr(ledger, "add_transactions", failing_insert)

        with pytest.raises(PersistenceError):
            await service.rollback.rollback(snapshot.id)

        assert await ledger.count_transactions(book.id) == 4
        assert (await ledger.get_book(book.id)).data.book_name == "Renamed"
        pre = await store.list_snapshots(book.id, tags=["pre-rollback"])
        assert len(pre) == 1
        assert not service.locks.is_locked(book.id)

    @pytest.mark.asyncio
    async def test_closed_book_reopens_without_closed_at(self, service, ledger, make_book):
        """Rolling a closed book back to an open snapshot clears closed_at."""
        book, _ = await make_book(TRANSACTIONS)
        snapshot = await service.create_snapshot(book.id)
        closed = await service.change_book_status(book.id, "closed")
        assert closed.data.closed_at is not None

        await service.rollback_snapshot(snapshot.id, False)

        restored = await ledger.get_book(book.id)
        assert restored.status == "open"
        assert restored.data.closed_at is None

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, service):
        with pytest.raises(NotFoundError):
            await service.rollback.rollback("missing")

    @pytest.mark.asyncio
    async def test_missing_book(self, db, service, store, drifted):
        book, _, snapshot = drifted
        with db.transaction() as session:
            session.execute("DELETE FROM fiscal_books WHERE id = ?", (book.id,))

        with pytest.raises(NotFoundError) as exc_info:
            await service.rollback.rollback(snapshot.id)

        assert exc_info.value.resource_type == "fiscal_book"
        assert await store.count_snapshots(book.id) == 1


class TestClone:
    """Tests for RollbackCoordinator.clone."""

    @pytest.mark.asyncio
    async def test_creates_independent_book(self, service, ledger, store, make_book):
        book, live = await make_book(TRANSACTIONS, status="closed", notes="n")
        snapshot = await service.capture.capture(book.id)

        result = await service.rollback.clone(snapshot.id)

        clone = result.fiscal_book
        assert clone.id != book.id
        assert clone.data.book_name == "January 2024 (Copy)"
        assert clone.status == "open"
        assert clone.data.notes == "n"
        assert result.transaction_count == 3

        cloned = await ledger.list_transactions(clone.id)
        assert len(cloned) == 3
        assert {tx.id for tx in cloned}.isdisjoint({tx.id for tx in live})
        assert await ledger.count_transactions(book.id) == 3
        assert (await ledger.get_book(book.id)).status == "closed"
        assert await store.count_snapshot_transactions(snapshot.id) == 3

    @pytest.mark.asyncio
    async def test_overrides(self, service, make_book):
        book, _ = await make_book(TRANSACTIONS)
        snapshot = await service.capture.capture(book.id)

        result = await service.rollback.clone(
            snapshot.id, {"book_name": "February 2024", "book_period": "2024-02", "notes": ""}
        )

        assert result.fiscal_book.data.book_name == "February 2024"
        assert result.fiscal_book.data.book_period == "2024-02"
        assert result.fiscal_book.data.notes is None

    @pytest.mark.asyncio
    async def test_changes_to_clone_stay_local(self, service, ledger, make_book):
        book, _ = await make_book(TRANSACTIONS)
        snapshot = await service.capture.capture(book.id)
        clone = (await service.rollback.clone(snapshot.id)).fiscal_book

        await ledger.delete_transactions_for_book(clone.id)

        assert await ledger.count_transactions(book.id) == 3
        comparison = await service.comparator.compare(snapshot.id)
        assert comparison.counts["unchanged"] == 3

    @pytest.mark.asyncio
    async def test_missing_snapshot(self, service):
        with pytest.raises(NotFoundError):
            await service.rollback.clone("missing")
