"""
Snapshot store: persistence for snapshot headers, snapshot transaction
copies and snapshot schedules.

Invariants:
    - A snapshot transaction always references an existing snapshot
      (foreign key) and is only written in bulk alongside its header
    - The snapshot_tags index is always consistent with snapshots.tags_json
    - A protected snapshot is never deleted; the protection check and the
      delete run inside the same transaction
    - Header fields other than tags, is_protected and annotations are
      written once and never updated

How to change safely:
    - Add new header columns as nullable
    - Keep explicit update methods per mutable field; never accept an
      arbitrary patch for a snapshot header
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime

from ..errors import ProtectedResourceError
from ..models import (
    Annotation,
    CreationSource,
    FiscalBookData,
    FiscalBookSnapshot,
    ScheduleFrequency,
    SnapshotSchedule,
    SnapshotStatistics,
    SnapshotTransaction,
    TransactionData,
    format_timestamp,
    normalize_tags,
    parse_timestamp,
    utc_now,
)
from .database import Database, Session

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """One page of a listing.

    Attributes:
        items: Entities on this page
        total: Total number of matching entities
        limit: Page size used (None for unbounded)
        skip: Number of entities skipped
    """

    items: list
    total: int
    limit: int | None
    skip: int


class SnapshotStore:
    """SQLite store for snapshots and schedules.

    Every method accepts an optional ``session``; when given, the call joins
    that unit of work instead of committing on its own.

    Example:
        >>> store = SnapshotStore(db)
        >>> with db.transaction() as session:
        ...     await store.create_snapshot(snapshot, session=session)
        ...     await store.create_snapshot_transactions(copies, session=session)
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ----- Snapshot headers -----

    async def create_snapshot(
        self,
        snapshot: FiscalBookSnapshot,
        session: Session | None = None,
    ) -> FiscalBookSnapshot:
        """Persist a snapshot header and its tag index entries."""
        with self.db.write_scope(session) as conn:
            conn.execute(
                """
                INSERT INTO snapshots (id, original_fiscal_book_id, snapshot_name,
                                       snapshot_description, creation_source, tags_json,
                                       is_protected, annotations_json,
                                       fiscal_book_data_json, statistics_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot.id,
                    snapshot.original_fiscal_book_id,
                    snapshot.snapshot_name,
                    snapshot.snapshot_description,
                    snapshot.creation_source.value,
                    json.dumps(snapshot.tags),
                    int(snapshot.is_protected),
                    json.dumps([a.to_dict() for a in snapshot.annotations]),
                    json.dumps(snapshot.fiscal_book_data.to_dict()),
                    json.dumps(snapshot.statistics.to_dict()),
                    format_timestamp(snapshot.created_at),
                ),
            )
            self._update_tag_index(conn, snapshot.id, snapshot.tags)

        logger.debug(
            "Created snapshot header",
            extra={
                "snapshot_id": snapshot.id,
                "fiscal_book_id": snapshot.original_fiscal_book_id,
                "creation_source": snapshot.creation_source.value,
            },
        )
        return snapshot

    async def get_snapshot(
        self,
        snapshot_id: str,
        session: Session | None = None,
    ) -> FiscalBookSnapshot | None:
        """Get a snapshot header by ID, or None."""
        with self.db.read_scope(session) as conn:
            row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
            if not row:
                return None
            return self._row_to_snapshot(row)

    async def list_snapshots(
        self,
        book_id: str,
        tags: list[str] | None = None,
        limit: int | None = None,
        skip: int = 0,
        session: Session | None = None,
    ) -> list[FiscalBookSnapshot]:
        """Snapshots of a book, newest first.

        Args:
            book_id: Originating fiscal book
            tags: Only snapshots carrying all of these tags
            limit: Maximum snapshots to return (None for all)
            skip: Pagination offset
        """
        where, params = self._snapshot_filter(book_id, tags)
        sql = f"SELECT * FROM snapshots WHERE {where} ORDER BY created_at DESC, rowid DESC"
        sql += " LIMIT ? OFFSET ?"
        params.extend([limit if limit is not None else -1, skip])

        with self.db.read_scope(session) as conn:
            cursor = conn.execute(sql, params)
            return [self._row_to_snapshot(row) for row in cursor.fetchall()]

    async def count_snapshots(
        self,
        book_id: str,
        tags: list[str] | None = None,
        session: Session | None = None,
    ) -> int:
        """Count snapshots of a book matching the same filter as list_snapshots."""
        where, params = self._snapshot_filter(book_id, tags)
        with self.db.read_scope(session) as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM snapshots WHERE {where}", params).fetchone()
            return row[0]

    async def update_tags(
        self,
        snapshot_id: str,
        tags: list[str],
        session: Session | None = None,
    ) -> FiscalBookSnapshot | None:
        """Replace a snapshot's tags (normalized). Returns None if not found."""
        tags = normalize_tags(tags)
        with self.db.write_scope(session) as conn:
            cursor = conn.execute(
                "UPDATE snapshots SET tags_json = ? WHERE id = ?",
                (json.dumps(tags), snapshot_id),
            )
            if cursor.rowcount == 0:
                return None
            self._update_tag_index(conn, snapshot_id, tags)
            row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
            return self._row_to_snapshot(row)

    async def set_protection(
        self,
        snapshot_id: str,
        is_protected: bool,
        session: Session | None = None,
    ) -> FiscalBookSnapshot | None:
        """Set or clear the protection flag. Returns None if not found."""
        with self.db.write_scope(session) as conn:
            cursor = conn.execute(
                "UPDATE snapshots SET is_protected = ? WHERE id = ?",
                (int(is_protected), snapshot_id),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
            return self._row_to_snapshot(row)

    async def add_annotation(
        self,
        snapshot_id: str,
        annotation: Annotation,
        session: Session | None = None,
    ) -> FiscalBookSnapshot | None:
        """Append an annotation to a snapshot. Returns None if not found."""
        with self.db.write_scope(session) as conn:
            row = conn.execute(
                "SELECT annotations_json FROM snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()
            if not row:
                return None

            annotations = json.loads(row["annotations_json"])
            annotations.append(annotation.to_dict())
            conn.execute(
                "UPDATE snapshots SET annotations_json = ? WHERE id = ?",
                (json.dumps(annotations), snapshot_id),
            )
            row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
            return self._row_to_snapshot(row)

    async def delete_snapshot(self, snapshot_id: str, session: Session | None = None) -> bool:
        """Delete a snapshot and its transaction copies.

        Returns:
            True if deleted, False if not found

        Raises:
            ProtectedResourceError: If the snapshot is protected
        """
        with self.db.write_scope(session) as conn:
            row = conn.execute(
                "SELECT is_protected FROM snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()
            if not row:
                return False
            if row["is_protected"]:
                raise ProtectedResourceError(snapshot_id)

            conn.execute("DELETE FROM snapshot_transactions WHERE snapshot_id = ?", (snapshot_id,))
            conn.execute("DELETE FROM snapshot_tags WHERE snapshot_id = ?", (snapshot_id,))
            conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))

        logger.debug("Deleted snapshot", extra={"snapshot_id": snapshot_id})
        return True

    async def delete_snapshots_for_book(self, book_id: str, session: Session | None = None) -> int:
        """Delete every snapshot of a book together with its copies.

        Does not touch the book's schedule; callers cascading a full book
        removal do that in the same session.

        Returns:
            Number of snapshot headers deleted

        Raises:
            ProtectedResourceError: If any snapshot of the book is protected;
                nothing is deleted in that case
        """
        with self.db.write_scope(session) as conn:
            protected = conn.execute(
                """
                SELECT id FROM snapshots
                WHERE original_fiscal_book_id = ? AND is_protected = 1
                ORDER BY created_at DESC LIMIT 1
                """,
                (book_id,),
            ).fetchone()
            if protected:
                raise ProtectedResourceError(protected["id"])

            subquery = "SELECT id FROM snapshots WHERE original_fiscal_book_id = ?"
            conn.execute(
                f"DELETE FROM snapshot_transactions WHERE snapshot_id IN ({subquery})",
                (book_id,),
            )
            conn.execute(f"DELETE FROM snapshot_tags WHERE snapshot_id IN ({subquery})", (book_id,))
            cursor = conn.execute(
                "DELETE FROM snapshots WHERE original_fiscal_book_id = ?", (book_id,)
            )
            return cursor.rowcount

    async def find_snapshot_ids_for_cleanup(
        self,
        book_id: str,
        retention_count: int,
        session: Session | None = None,
    ) -> list[str]:
        """IDs of unprotected scheduled snapshots beyond the newest retention_count."""
        with self.db.read_scope(session) as conn:
            cursor = conn.execute(
                """
                SELECT id FROM snapshots
                WHERE original_fiscal_book_id = ?
                  AND creation_source = ?
                  AND is_protected = 0
                ORDER BY created_at DESC, rowid DESC
                LIMIT -1 OFFSET ?
                """,
                (book_id, CreationSource.SCHEDULED.value, max(retention_count, 0)),
            )
            return [row["id"] for row in cursor.fetchall()]

    # ----- Snapshot transactions -----

    async def create_snapshot_transactions(
        self,
        items: list[SnapshotTransaction],
        session: Session | None = None,
    ) -> int:
        """Bulk-insert snapshot transaction copies. Returns the count."""
        if not items:
            return 0

        with self.db.write_scope(session) as conn:
            conn.executemany(
                """
                INSERT INTO snapshot_transactions (id, snapshot_id, original_transaction_id,
                                                   transaction_data_json, annotations_json,
                                                   transaction_date, copied_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.id,
                        item.snapshot_id,
                        item.original_transaction_id,
                        json.dumps(item.transaction_data.to_dict()),
                        json.dumps([a.to_dict() for a in item.annotations]),
                        format_timestamp(item.transaction_data.transaction_date),
                        format_timestamp(item.copied_at),
                    )
                    for item in items
                ],
            )
        return len(items)

    async def get_snapshot_transactions(
        self,
        snapshot_id: str,
        limit: int | None = None,
        skip: int = 0,
        session: Session | None = None,
    ) -> list[SnapshotTransaction]:
        """Transaction copies of a snapshot, most recent transaction date first."""
        with self.db.read_scope(session) as conn:
            cursor = conn.execute(
                """
                SELECT * FROM snapshot_transactions
                WHERE snapshot_id = ?
                ORDER BY transaction_date IS NULL, transaction_date DESC, rowid
                LIMIT ? OFFSET ?
                """,
                (snapshot_id, limit if limit is not None else -1, skip),
            )
            return [self._row_to_snapshot_transaction(row) for row in cursor.fetchall()]

    async def count_snapshot_transactions(
        self,
        snapshot_id: str,
        session: Session | None = None,
    ) -> int:
        with self.db.read_scope(session) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM snapshot_transactions WHERE snapshot_id = ?",
                (snapshot_id,),
            ).fetchone()
            return row[0]

    async def get_snapshot_transaction(
        self,
        snapshot_transaction_id: str,
        session: Session | None = None,
    ) -> SnapshotTransaction | None:
        with self.db.read_scope(session) as conn:
            row = conn.execute(
                "SELECT * FROM snapshot_transactions WHERE id = ?", (snapshot_transaction_id,)
            ).fetchone()
            if not row:
                return None
            return self._row_to_snapshot_transaction(row)

    async def add_transaction_annotation(
        self,
        snapshot_transaction_id: str,
        annotation: Annotation,
        session: Session | None = None,
    ) -> SnapshotTransaction | None:
        """Append an annotation to one snapshot transaction copy."""
        with self.db.write_scope(session) as conn:
            row = conn.execute(
                "SELECT * FROM snapshot_transactions WHERE id = ?", (snapshot_transaction_id,)
            ).fetchone()
            if not row:
                return None

            annotations = json.loads(row["annotations_json"])
            annotations.append(annotation.to_dict())
            conn.execute(
                "UPDATE snapshot_transactions SET annotations_json = ? WHERE id = ?",
                (json.dumps(annotations), snapshot_transaction_id),
            )
            row = conn.execute(
                "SELECT * FROM snapshot_transactions WHERE id = ?", (snapshot_transaction_id,)
            ).fetchone()
            return self._row_to_snapshot_transaction(row)

    # ----- Schedules -----

    async def get_schedule(
        self,
        book_id: str,
        session: Session | None = None,
    ) -> SnapshotSchedule | None:
        with self.db.read_scope(session) as conn:
            row = conn.execute(
                "SELECT * FROM snapshot_schedules WHERE fiscal_book_id = ?", (book_id,)
            ).fetchone()
            if not row:
                return None
            return self._row_to_schedule(row)

    async def save_schedule(
        self,
        schedule: SnapshotSchedule,
        session: Session | None = None,
    ) -> SnapshotSchedule:
        """Insert or replace the schedule of a book (upsert keyed by book id)."""
        now = utc_now()
        with self.db.write_scope(session) as conn:
            conn.execute(
                """
                INSERT INTO snapshot_schedules (fiscal_book_id, enabled, frequency, day_of_week,
                                                day_of_month, retention_count, auto_tags_json,
                                                last_executed_at, next_execution_at,
                                                created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (fiscal_book_id) DO UPDATE SET
                    enabled = excluded.enabled,
                    frequency = excluded.frequency,
                    day_of_week = excluded.day_of_week,
                    day_of_month = excluded.day_of_month,
                    retention_count = excluded.retention_count,
                    auto_tags_json = excluded.auto_tags_json,
                    last_executed_at = excluded.last_executed_at,
                    next_execution_at = excluded.next_execution_at,
                    updated_at = excluded.updated_at
                """,
                (
                    schedule.fiscal_book_id,
                    int(schedule.enabled),
                    schedule.frequency.value,
                    schedule.day_of_week,
                    schedule.day_of_month,
                    schedule.retention_count,
                    json.dumps(normalize_tags(schedule.auto_tags)),
                    format_timestamp(schedule.last_executed_at),
                    format_timestamp(schedule.next_execution_at),
                    format_timestamp(schedule.created_at or now),
                    format_timestamp(now),
                ),
            )
            row = conn.execute(
                "SELECT * FROM snapshot_schedules WHERE fiscal_book_id = ?",
                (schedule.fiscal_book_id,),
            ).fetchone()
            return self._row_to_schedule(row)

    async def delete_schedule(self, book_id: str, session: Session | None = None) -> bool:
        with self.db.write_scope(session) as conn:
            cursor = conn.execute(
                "DELETE FROM snapshot_schedules WHERE fiscal_book_id = ?", (book_id,)
            )
            return cursor.rowcount > 0

    async def find_due_schedules(
        self,
        now: datetime,
        session: Session | None = None,
    ) -> list[SnapshotSchedule]:
        """Enabled schedules whose next_execution_at is at or before now."""
        with self.db.read_scope(session) as conn:
            cursor = conn.execute(
                """
                SELECT * FROM snapshot_schedules
                WHERE enabled = 1
                  AND next_execution_at IS NOT NULL
                  AND next_execution_at <= ?
                ORDER BY next_execution_at, fiscal_book_id
                """,
                (format_timestamp(now),),
            )
            return [self._row_to_schedule(row) for row in cursor.fetchall()]

    async def update_schedule_execution(
        self,
        book_id: str,
        last_executed_at: datetime,
        next_execution_at: datetime | None,
        session: Session | None = None,
    ) -> SnapshotSchedule | None:
        """Record an execution. Returns None if the schedule is gone."""
        with self.db.write_scope(session) as conn:
            cursor = conn.execute(
                """
                UPDATE snapshot_schedules
                SET last_executed_at = ?, next_execution_at = ?, updated_at = ?
                WHERE fiscal_book_id = ?
                """,
                (
                    format_timestamp(last_executed_at),
                    format_timestamp(next_execution_at),
                    format_timestamp(utc_now()),
                    book_id,
                ),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM snapshot_schedules WHERE fiscal_book_id = ?", (book_id,)
            ).fetchone()
            return self._row_to_schedule(row)

    # ----- Helpers -----

    def _snapshot_filter(self, book_id: str, tags: list[str] | None) -> tuple[str, list]:
        where = "original_fiscal_book_id = ?"
        params: list = [book_id]
        wanted = normalize_tags(tags)
        if wanted:
            placeholders = ", ".join("?" for _ in wanted)
            where += f"""
                AND id IN (
                    SELECT snapshot_id FROM snapshot_tags
                    WHERE tag IN ({placeholders})
                    GROUP BY snapshot_id
                    HAVING COUNT(*) = ?
                )
            """
            params.extend(wanted)
            params.append(len(wanted))
        return where, params

    def _update_tag_index(
        self,
        conn: sqlite3.Connection,
        snapshot_id: str,
        tags: list[str],
    ) -> None:
        """Rebuild tag index rows for a snapshot."""
        conn.execute("DELETE FROM snapshot_tags WHERE snapshot_id = ?", (snapshot_id,))
        conn.executemany(
            "INSERT OR IGNORE INTO snapshot_tags (snapshot_id, tag) VALUES (?, ?)",
            [(snapshot_id, tag) for tag in normalize_tags(tags)],
        )

    def _row_to_snapshot(self, row: sqlite3.Row) -> FiscalBookSnapshot:
        return FiscalBookSnapshot(
            id=row["id"],
            original_fiscal_book_id=row["original_fiscal_book_id"],
            snapshot_name=row["snapshot_name"],
            snapshot_description=row["snapshot_description"],
            creation_source=CreationSource(row["creation_source"]),
            fiscal_book_data=FiscalBookData.from_dict(json.loads(row["fiscal_book_data_json"])),
            statistics=SnapshotStatistics.from_dict(json.loads(row["statistics_json"])),
            created_at=parse_timestamp(row["created_at"]),
            tags=json.loads(row["tags_json"]),
            is_protected=bool(row["is_protected"]),
            annotations=[Annotation.from_dict(a) for a in json.loads(row["annotations_json"])],
        )

    def _row_to_snapshot_transaction(self, row: sqlite3.Row) -> SnapshotTransaction:
        return SnapshotTransaction(
            id=row["id"],
            snapshot_id=row["snapshot_id"],
            original_transaction_id=row["original_transaction_id"],
            transaction_data=TransactionData.from_dict(json.loads(row["transaction_data_json"])),
            copied_at=parse_timestamp(row["copied_at"]),
            annotations=[Annotation.from_dict(a) for a in json.loads(row["annotations_json"])],
        )

    def _row_to_schedule(self, row: sqlite3.Row) -> SnapshotSchedule:
        return SnapshotSchedule(
            fiscal_book_id=row["fiscal_book_id"],
            enabled=bool(row["enabled"]),
            frequency=ScheduleFrequency(row["frequency"]),
            day_of_week=row["day_of_week"],
            day_of_month=row["day_of_month"],
            retention_count=row["retention_count"],
            auto_tags=json.loads(row["auto_tags_json"]),
            last_executed_at=parse_timestamp(row["last_executed_at"]),
            next_execution_at=parse_timestamp(row["next_execution_at"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )
