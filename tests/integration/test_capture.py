"""
Integration tests for snapshot capture.

Tests cover:
- Statistics at capture time
- Completeness of transaction copies
- Independence from later ledger changes
- All-or-nothing persistence
"""

import pytest

from fiscal_snapshots.errors import NotFoundError, PersistenceError
from fiscal_snapshots.models import CreationSource


class TestCapture:
    """Tests for SnapshotCapture."""

    @pytest.mark.asyncio
    async def test_credit_debit_statistics(self, service, make_book):
        """A credit of 100 and a debit of 50 give {2, 100, 50, 50}."""
        book, _ = await make_book(
            [
                {"transaction_value": "100", "transaction_type": "credit"},
                {"transaction_value": "50", "transaction_type": "debit"},
            ]
        )

        snapshot = await service.capture.capture(book.id)

        stats = snapshot.statistics
        assert stats.transaction_count == 2
        assert stats.total_income == 100.0
        assert stats.total_expenses == 50.0
        assert stats.net_amount == 50.0

    @pytest.mark.asyncio
    async def test_one_copy_per_live_transaction(self, service, store, make_book):
        book, live = await make_book(
            [
                {"transaction_value": "10", "transaction_name": "a", "items": [{"sku": "x"}]},
                {"transaction_value": "20", "transaction_name": "b"},
                {"transaction_value": "30", "transaction_name": "c"},
            ]
        )

        snapshot = await service.capture.capture(book.id)
        copies = await store.get_snapshot_transactions(snapshot.id)

        assert len(copies) == 3
        by_original = {c.original_transaction_id: c for c in copies}
        for tx in live:
            assert by_original[tx.id].transaction_data == tx.data
            assert by_original[tx.id].snapshot_id == snapshot.id

    @pytest.mark.asyncio
    async def test_header_fields(self, service, store, make_book, clock):
        book, _ = await make_book(reference="REF-1", notes="draft")

        snapshot = await service.capture.capture(
            book.id, description="before audit", tags=[" Audit ", "audit", "Q1"]
        )
        fetched = await store.get_snapshot(snapshot.id)

        assert fetched.snapshot_name == "Snapshot 2024-03-15"
        assert fetched.snapshot_description == "before audit"
        assert fetched.creation_source is CreationSource.MANUAL
        assert fetched.tags == ["audit", "q1"]
        assert fetched.is_protected is False
        assert fetched.created_at == clock.now
        assert fetched.fiscal_book_data.book_name == "January 2024"
        assert fetched.fiscal_book_data.reference == "REF-1"
        assert fetched.fiscal_book_data.notes == "draft"

    @pytest.mark.asyncio
    async def test_empty_book(self, service, store, make_book):
        book, _ = await make_book()

        snapshot = await service.capture.capture(book.id)

        assert snapshot.statistics.transaction_count == 0
        assert await store.count_snapshot_transactions(snapshot.id) == 0

    @pytest.mark.asyncio
    async def test_missing_book(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.capture.capture("missing")
        assert exc_info.value.resource_type == "fiscal_book"

    @pytest.mark.asyncio
    async def test_copies_unaffected_by_later_changes(self, service, ledger, store, make_book):
        """Snapshot copies are independent from the live ledger."""
        book, live = await make_book([{"transaction_value": "100", "items": [{"qty": 1}]}])
        snapshot = await service.capture.capture(book.id)

        changed = live[0].data.copy()
        changed.transaction_value = "999"
        changed.items[0]["qty"] = 7
        await ledger.update_transaction(live[0].id, changed)
        await ledger.delete_transactions_for_book(book.id)

        copies = await store.get_snapshot_transactions(snapshot.id)
        assert copies[0].transaction_data.transaction_value == "100"
        assert copies[0].transaction_data.items == [{"qty": 1}]
        assert (await store.get_snapshot(snapshot.id)).statistics.total_expenses == 100.0

    @pytest.mark.asyncio
    async def test_failure_persists_nothing(self, service, store, make_book, monkeypatch):
        """A failing bulk insert rolls back the header too."""
        book, _ = await make_book([{"transaction_value": "10"}])

        async def failing_insert(items, session=None):
            raise PersistenceError("disk I/O error", operation="insert")

        monkeypatch.setattr(store, "create_snapshot_transactions", failing_insert)

        with pytest.raises(PersistenceError):
            await service.capture.capture(book.id)

        assert await store.count_snapshots(book.id) == 0

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, service, make_book):
        with pytest.raises(NotFoundError):
            await service.capture.capture("missing")
        assert not service.locks.is_locked("missing")
