"""
Snapshot module for the fiscal snapshot engine.

This module handles:
- Capturing immutable point-in-time snapshots of fiscal books
- Comparing snapshots with the live state of their book
- Retention of scheduled snapshots
- Destructive rollback and non-destructive clone
- JSON and CSV export

Invariants:
    - Snapshot statistics are computed once, at capture
    - Protected snapshots are never pruned or deleted
    - Rollback takes its safety snapshot before the destructive phase
"""

from .capture import SnapshotCapture, compute_statistics
from .comparator import ComparisonResult, FieldChange, ModifiedTransaction, SnapshotComparator
from .export import ExportResult, SnapshotExporter
from .retention import RetentionManager
from .rollback import CloneResult, RollbackCoordinator, RollbackResult

__all__ = [
    "SnapshotCapture",
    "compute_statistics",
    "SnapshotComparator",
    "ComparisonResult",
    "FieldChange",
    "ModifiedTransaction",
    "SnapshotExporter",
    "ExportResult",
    "RetentionManager",
    "RollbackCoordinator",
    "RollbackResult",
    "CloneResult",
]
