"""
Store module for the fiscal snapshot engine.

This module handles:
- The SQLite database file, its schema and units of work (sessions)
- Fiscal books and their live transactions (the ledger)
- Snapshot headers, snapshot transaction copies and schedules

Invariants:
    - Every multi-statement write runs inside BEGIN IMMEDIATE ... COMMIT
    - Snapshot tag index is always consistent with snapshot tags
    - Protected snapshots are never deleted

How to change safely:
    - Keep schema changes additive and bump Database.SCHEMA_VERSION
    - Use a Session for all writes that must commit together
"""

from .database import Database, Session
from .ledger_store import LedgerStore
from .snapshot_store import Page, SnapshotStore

__all__ = [
    "Database",
    "Session",
    "LedgerStore",
    "SnapshotStore",
    "Page",
]
