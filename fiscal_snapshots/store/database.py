"""
SQLite database access for the fiscal snapshot engine.

This module owns the single SQLite file holding:
- Fiscal books and their live transactions (the ledger)
- Snapshot headers, the tag index and snapshot transaction copies
- Snapshot schedules

Invariants:
    - Connections run in autocommit mode; every multi-statement write is
      wrapped in an explicit BEGIN IMMEDIATE ... COMMIT / ROLLBACK
    - A Session is the unit of work: every store call given the same
      session joins the same transaction
    - sqlite3 errors never leave this module raw; they surface as
      PersistenceError after the transaction has been rolled back

How to change safely:
    - Schema changes must be additive (new tables, new nullable columns)
    - Bump SCHEMA_VERSION and record it in schema_version
    - Keep foreign keys enabled; snapshot_transactions depend on them

Table schema:
    fiscal_books:
        - id TEXT PRIMARY KEY
        - data_json TEXT (descriptive fields)
        - status TEXT
        - created_at TEXT, updated_at TEXT (UTC ISO-8601)

    transactions:
        - id TEXT PRIMARY KEY
        - fiscal_book_id TEXT
        - data_json TEXT (business fields)
        - transaction_date TEXT
        - created_at TEXT

    snapshots:
        - id TEXT PRIMARY KEY
        - original_fiscal_book_id TEXT
        - snapshot_name, snapshot_description, creation_source TEXT
        - tags_json, annotations_json, fiscal_book_data_json, statistics_json TEXT
        - is_protected INTEGER
        - created_at TEXT

    snapshot_tags:
        - snapshot_id TEXT, tag TEXT
        - PRIMARY KEY (snapshot_id, tag)

    snapshot_transactions:
        - id TEXT PRIMARY KEY
        - snapshot_id TEXT REFERENCES snapshots(id)
        - original_transaction_id TEXT (nullable)
        - transaction_data_json, annotations_json TEXT
        - transaction_date, copied_at TEXT

    snapshot_schedules:
        - fiscal_book_id TEXT PRIMARY KEY
        - enabled INTEGER, frequency TEXT
        - day_of_week INTEGER, day_of_month INTEGER, retention_count INTEGER
        - auto_tags_json TEXT
        - last_executed_at, next_execution_at, created_at, updated_at TEXT
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ..errors import PersistenceError
from ..models import format_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """An open write transaction.

    Passed explicitly (``session=...``) to every store call that must commit
    or roll back together with the others.
    """

    connection: sqlite3.Connection
    closed: bool = False

    def execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        if self.closed:
            raise PersistenceError("Session is closed", operation="execute")
        return self.connection.execute(sql, params)


class Database:
    """Connection factory and schema owner.

    Thread safety:
        Each operation (or session) uses its own connection.
        SQLite serializes writers via BEGIN IMMEDIATE.

    Example:
        >>> db = Database("/var/lib/fiscal/snapshots.db")
        >>> await db.initialize()
        >>> with db.transaction() as session:
        ...     await ledger.create_book(data, session=session)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the database handle.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Yields:
            SQLite connection in autocommit mode

        Raises:
            PersistenceError: On any sqlite3 failure inside the block
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise PersistenceError(str(e), operation="connect") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        except sqlite3.Error as e:
            logger.error(f"Database error: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Run the block as one atomic unit.

        Commits when the block exits normally, rolls back on any exception
        and re-raises it.
        """
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            session = Session(conn)
            try:
                yield session
                conn.execute("COMMIT")
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                session.closed = True

    @contextmanager
    def read_scope(self, session: Session | None = None) -> Iterator[sqlite3.Connection]:
        """Connection for reads: the session's if given, else a fresh one."""
        if session is not None:
            yield self._session_connection(session)
        else:
            with self.connect() as conn:
                yield conn

    @contextmanager
    def write_scope(self, session: Session | None = None) -> Iterator[sqlite3.Connection]:
        """Connection for writes: joins the session if given, else its own transaction."""
        if session is not None:
            yield self._session_connection(session)
        else:
            with self.transaction() as own:
                yield own.connection

    @staticmethod
    def _session_connection(session: Session) -> sqlite3.Connection:
        if session.closed:
            raise PersistenceError("Session is closed", operation="join")
        return session.connection

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self.connect() as conn:
            self._create_schema(conn)
        logger.info(f"Initialized snapshot database: {self.db_path}")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );

            -- Ledger
            CREATE TABLE IF NOT EXISTS fiscal_books (
                id TEXT PRIMARY KEY,
                data_json TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                fiscal_book_id TEXT NOT NULL,
                data_json TEXT NOT NULL DEFAULT '{}',
                transaction_date TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_book
                ON transactions(fiscal_book_id);

            -- Snapshot headers
            CREATE TABLE IF NOT EXISTS snapshots (
                id TEXT PRIMARY KEY,
                original_fiscal_book_id TEXT NOT NULL,
                snapshot_name TEXT NOT NULL,
                snapshot_description TEXT,
                creation_source TEXT NOT NULL,
                tags_json TEXT NOT NULL DEFAULT '[]',
                is_protected INTEGER NOT NULL DEFAULT 0,
                annotations_json TEXT NOT NULL DEFAULT '[]',
                fiscal_book_data_json TEXT NOT NULL DEFAULT '{}',
                statistics_json TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_book
                ON snapshots(original_fiscal_book_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_snapshots_cleanup
                ON snapshots(original_fiscal_book_id, creation_source, is_protected);

            -- Tag index for AND-match filtering
            CREATE TABLE IF NOT EXISTS snapshot_tags (
                snapshot_id TEXT NOT NULL REFERENCES snapshots(id),
                tag TEXT NOT NULL,
                PRIMARY KEY (snapshot_id, tag)
            );

            CREATE INDEX IF NOT EXISTS idx_snapshot_tags_tag
                ON snapshot_tags(tag, snapshot_id);

            -- Snapshot transaction copies
            CREATE TABLE IF NOT EXISTS snapshot_transactions (
                id TEXT PRIMARY KEY,
                snapshot_id TEXT NOT NULL REFERENCES snapshots(id),
                original_transaction_id TEXT,
                transaction_data_json TEXT NOT NULL DEFAULT '{}',
                annotations_json TEXT NOT NULL DEFAULT '[]',
                transaction_date TEXT,
                copied_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_snapshot_transactions_snapshot
                ON snapshot_transactions(snapshot_id, original_transaction_id);

            -- Schedules, one per fiscal book
            CREATE TABLE IF NOT EXISTS snapshot_schedules (
                fiscal_book_id TEXT PRIMARY KEY,
                enabled INTEGER NOT NULL DEFAULT 0,
                frequency TEXT NOT NULL DEFAULT 'monthly',
                day_of_week INTEGER,
                day_of_month INTEGER,
                retention_count INTEGER NOT NULL DEFAULT 12,
                auto_tags_json TEXT NOT NULL DEFAULT '["auto"]',
                last_executed_at TEXT,
                next_execution_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_schedules_due
                ON snapshot_schedules(enabled, next_execution_at);
        """)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, format_timestamp(utc_now())),
        )
