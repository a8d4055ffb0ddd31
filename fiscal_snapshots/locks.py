"""
Per-book serialization of snapshot writes.

Capture, rollback and retention cleanup against the same fiscal book are
serialized within one process. Cross-process writers are serialized by
SQLite's BEGIN IMMEDIATE write lock instead.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class BookLocks:
    """Registry of asyncio locks keyed by fiscal book id.

    A book's lock is dropped once no task holds or waits for it, so the
    registry stays bounded by the number of books being written to.

    Locks are not re-entrant: a holder must not call into another component
    that acquires the same book's lock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, book_id: str) -> AsyncIterator[None]:
        """Hold the lock for one book for the duration of the block."""
        lock = self._locks.get(book_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[book_id] = lock
        self._users[book_id] = self._users.get(book_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[book_id] -= 1
            if not self._users[book_id]:
                del self._users[book_id]
                self._locks.pop(book_id, None)

    def is_locked(self, book_id: str) -> bool:
        lock = self._locks.get(book_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
