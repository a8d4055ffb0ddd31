"""
Shared fixtures for fiscal snapshot tests.

Every SQLite-backed test gets its own temporary database file and a
controllable clock starting on Friday 2024-03-15 10:30 UTC.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from fiscal_snapshots.models import FiscalBookData, TransactionData
from fiscal_snapshots.service import SnapshotService
from fiscal_snapshots.store import Database

START = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
async def db(data_dir):
    """Initialized database in the temporary directory."""
    database = Database(os.path.join(data_dir, "snapshots.db"), wal_mode=False)
    await database.initialize()
    return database


@pytest.fixture
def service(db, clock):
    return SnapshotService(db, clock=clock)


@pytest.fixture
def ledger(service):
    return service.ledger


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def make_book(ledger):
    """Factory creating a book with the given transactions.

    Each transaction is a dict of TransactionData fields.
    """

    async def _make(transactions=(), book_name="January 2024", **fields):
        book = await ledger.create_book(
            FiscalBookData(book_name=book_name, book_period="2024-01", **fields)
        )
        created = await ledger.add_transactions(
            book.id, [TransactionData(**tx) for tx in transactions]
        )
        return book, created

    return _make
