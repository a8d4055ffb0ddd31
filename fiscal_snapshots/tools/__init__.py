"""
CLI tools for fiscal snapshot administration.

This module provides command-line tools for:
- run-due: Execute due snapshot schedules (the external trigger)
- export: Export a snapshot to JSON or CSV
- compare: Diff a snapshot against its book's current state

Invariants:
    - Tools work directly on the SQLite file (no running server required)
"""

from .snapshot_cli import SnapshotCLI

__all__ = ["SnapshotCLI"]
