"""
Retention policy for scheduled snapshots.

Only snapshots created by the scheduler are subject to retention. Manual,
status-change and protected snapshots are never pruned.

Invariants:
    - The newest retention_count scheduled, unprotected snapshots survive
    - A failure on one candidate never stops the others
"""

from __future__ import annotations

import logging

from ..errors import SnapshotError
from ..locks import BookLocks
from ..store import SnapshotStore

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_COUNT = 12


class RetentionManager:
    """Prunes old scheduled snapshots of a book.

    Example:
        >>> retention = RetentionManager(store, locks)
        >>> deleted = await retention.cleanup(book_id, retention_count=4)
    """

    def __init__(self, store: SnapshotStore, locks: BookLocks) -> None:
        self.store = store
        self.locks = locks

    async def cleanup(self, book_id: str, retention_count: int = DEFAULT_RETENTION_COUNT) -> int:
        """Delete scheduled snapshots beyond the newest retention_count.

        Each candidate is deleted on its own; a candidate that fails (for
        example because it became protected meanwhile) is logged and skipped.

        Returns:
            Number of snapshots deleted
        """
        async with self.locks.hold(book_id):
            candidates = await self.store.find_snapshot_ids_for_cleanup(book_id, retention_count)
            deleted = 0
            for snapshot_id in candidates:
                try:
                    if await self.store.delete_snapshot(snapshot_id):
                        deleted += 1
                except SnapshotError as e:
                    logger.warning(
                        f"Skipping snapshot {snapshot_id} during retention cleanup: {e}",
                        extra={"snapshot_id": snapshot_id, "fiscal_book_id": book_id},
                    )

        if deleted:
            logger.info(
                f"Retention removed {deleted} snapshot(s) of fiscal book {book_id}",
                extra={
                    "fiscal_book_id": book_id,
                    "retention_count": retention_count,
                    "deleted": deleted,
                },
            )
        return deleted
