"""
Fiscal Snapshots - point-in-time snapshots of fiscal books.

This package implements a snapshot engine for period-scoped ledgers:
- Immutable snapshots of a book header and all its transactions
- Comparison of a snapshot with the book's live state
- Weekly, monthly and before-status-change automatic snapshots
- Retention of scheduled snapshots
- Destructive rollback and non-destructive clone
- JSON and CSV export

Architecture:
    ┌─────────────┐     ┌─────────────────┐     ┌────────────────┐
    │ SnapshotCLI │────▶│ SnapshotService │────▶│ ScheduleEngine │
    │  (run-due)  │     │    (facade)     │     └───────┬────────┘
    └─────────────┘     └────────┬────────┘             │
                                 │                      │
        ┌────────────┬───────────┼────────────┬─────────┘
        ▼            ▼           ▼            ▼
    ┌──────────┐ ┌─────────┐ ┌────────────┐ ┌───────────┐
    │ Rollback │ │ Capture │ │ Comparator │ │ Retention │
    └────┬─────┘ └────┬────┘ └─────┬──────┘ └─────┬─────┘
         │            │            │              │
         ▼            ▼            ▼              ▼
    ┌─────────────────────────────────────────────────────┐
    │   SQLite (ledger, snapshots, tag index, schedules)  │
    └─────────────────────────────────────────────────────┘

Invariants:
    - Snapshot headers are immutable apart from tags, protection and annotations
    - Every snapshot transaction belongs to exactly one snapshot
    - Protected snapshots are never deleted by any path
    - Statistics are computed once, at capture time

How to change safely:
    - Keep the SQLite schema additive
    - Add request fields as optional with defaults
"""

from ._version import __version__

__all__ = ["__version__"]
