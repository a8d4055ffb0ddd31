"""
Ledger store: fiscal books and their live transactions.

The snapshot engine only needs a narrow slice of ledger persistence: load a
book and its transactions, create books and transactions in bulk, overwrite a
book's descriptive fields and replace a book's transactions.

Invariants:
    - Every transaction belongs to exactly one fiscal book
    - Returned entities are detached copies; mutating them changes nothing
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid

from ..models import (
    FiscalBook,
    FiscalBookData,
    Transaction,
    TransactionData,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from .database import Database, Session

logger = logging.getLogger(__name__)


class LedgerStore:
    """SQLite store for fiscal books and live transactions.

    Example:
        >>> ledger = LedgerStore(db)
        >>> book = await ledger.create_book(FiscalBookData(book_name="2024-01"))
        >>> await ledger.add_transactions(book.id, [TransactionData(transaction_value="100")])
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create_book(
        self,
        data: FiscalBookData,
        book_id: str | None = None,
        session: Session | None = None,
    ) -> FiscalBook:
        """Create a fiscal book.

        Args:
            data: Descriptive fields
            book_id: Optional specific ID (generated if not provided)
            session: Unit of work to join

        Returns:
            Created FiscalBook
        """
        book_id = book_id or str(uuid.uuid4())
        now = utc_now()
        data = data.copy()
        data.created_at = data.created_at or now
        data.updated_at = now

        with self.db.write_scope(session) as conn:
            conn.execute(
                """
                INSERT INTO fiscal_books (id, data_json, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    book_id,
                    json.dumps(data.to_dict()),
                    data.status,
                    format_timestamp(data.created_at),
                    format_timestamp(data.updated_at),
                ),
            )

        logger.debug("Created fiscal book", extra={"fiscal_book_id": book_id})
        return FiscalBook(id=book_id, data=data.copy())

    async def get_book(self, book_id: str, session: Session | None = None) -> FiscalBook | None:
        """Get a fiscal book by ID, or None."""
        with self.db.read_scope(session) as conn:
            row = conn.execute("SELECT * FROM fiscal_books WHERE id = ?", (book_id,)).fetchone()
            if not row:
                return None
            return self._row_to_book(row)

    async def update_book(
        self,
        book_id: str,
        data: FiscalBookData,
        session: Session | None = None,
    ) -> FiscalBook | None:
        """Overwrite a book's descriptive fields.

        The book's original created_at is kept; updated_at is set to now.

        Returns:
            Updated FiscalBook or None if not found
        """
        with self.db.write_scope(session) as conn:
            row = conn.execute("SELECT * FROM fiscal_books WHERE id = ?", (book_id,)).fetchone()
            if not row:
                return None

            existing = self._row_to_book(row)
            data = data.copy()
            data.created_at = existing.data.created_at
            data.updated_at = utc_now()

            conn.execute(
                """
                UPDATE fiscal_books SET data_json = ?, status = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    json.dumps(data.to_dict()),
                    data.status,
                    format_timestamp(data.updated_at),
                    book_id,
                ),
            )

        return FiscalBook(id=book_id, data=data.copy())

    async def add_transactions(
        self,
        book_id: str,
        items: list[TransactionData],
        session: Session | None = None,
    ) -> list[Transaction]:
        """Bulk-insert transactions for a book, each with a fresh ID."""
        now = utc_now()
        created = [
            Transaction(id=str(uuid.uuid4()), fiscal_book_id=book_id, data=item.copy(), created_at=now)
            for item in items
        ]
        if not created:
            return []

        with self.db.write_scope(session) as conn:
            conn.executemany(
                """
                INSERT INTO transactions (id, fiscal_book_id, data_json, transaction_date, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        tx.id,
                        book_id,
                        json.dumps(tx.data.to_dict()),
                        format_timestamp(tx.data.transaction_date),
                        format_timestamp(now),
                    )
                    for tx in created
                ],
            )

        return created

    async def add_transaction(
        self,
        book_id: str,
        data: TransactionData,
        session: Session | None = None,
    ) -> Transaction:
        """Insert one transaction for a book."""
        created = await self.add_transactions(book_id, [data], session=session)
        return created[0]

    async def update_transaction(
        self,
        transaction_id: str,
        data: TransactionData,
        session: Session | None = None,
    ) -> Transaction | None:
        """Replace a transaction's business fields."""
        with self.db.write_scope(session) as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            if not row:
                return None

            conn.execute(
                "UPDATE transactions SET data_json = ?, transaction_date = ? WHERE id = ?",
                (
                    json.dumps(data.to_dict()),
                    format_timestamp(data.transaction_date),
                    transaction_id,
                ),
            )

        return Transaction(
            id=transaction_id,
            fiscal_book_id=row["fiscal_book_id"],
            data=data.copy(),
            created_at=parse_timestamp(row["created_at"]),
        )

    async def delete_transaction(self, transaction_id: str, session: Session | None = None) -> bool:
        """Delete one transaction. Returns False if it didn't exist."""
        with self.db.write_scope(session) as conn:
            cursor = conn.execute("DELETE FROM transactions WHERE id = ?", (transaction_id,))
            return cursor.rowcount > 0

    async def delete_transactions_for_book(
        self,
        book_id: str,
        session: Session | None = None,
    ) -> int:
        """Delete every transaction linked to a book. Returns the count."""
        with self.db.write_scope(session) as conn:
            cursor = conn.execute("DELETE FROM transactions WHERE fiscal_book_id = ?", (book_id,))
            return cursor.rowcount

    async def list_transactions(
        self,
        book_id: str,
        session: Session | None = None,
    ) -> list[Transaction]:
        """All live transactions of a book, in insertion order."""
        with self.db.read_scope(session) as conn:
            cursor = conn.execute(
                "SELECT * FROM transactions WHERE fiscal_book_id = ? ORDER BY rowid",
                (book_id,),
            )
            return [self._row_to_transaction(row) for row in cursor.fetchall()]

    async def count_transactions(self, book_id: str, session: Session | None = None) -> int:
        with self.db.read_scope(session) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE fiscal_book_id = ?", (book_id,)
            ).fetchone()
            return row[0]

    def _row_to_book(self, row: sqlite3.Row) -> FiscalBook:
        return FiscalBook(id=row["id"], data=FiscalBookData.from_dict(json.loads(row["data_json"])))

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            fiscal_book_id=row["fiscal_book_id"],
            data=TransactionData.from_dict(json.loads(row["data_json"])),
            created_at=parse_timestamp(row["created_at"]),
        )
