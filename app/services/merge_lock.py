"""
MediaHost Backend — Per-Fingerprint Merge Lock
================================================

What:  Guarantees at most one merge per fingerprint at a time within this
       process.
How:   A set of fingerprints currently being merged. claim() is synchronous
       (no await between the membership test and the insert), so two
       coroutines on the same event loop can never both claim the same
       fingerprint.

Scope:
    In-process only. A multi-worker deployment needs a shared claim (e.g. a
    row with a unique constraint or a Redis SET NX) instead.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Set

from app.exceptions import MergeInProgressError

logger = logging.getLogger(__name__)


class MergeLockRegistry:
    def __init__(self) -> None:
        self._active: Set[str] = set()

    def is_locked(self, file_hash: str) -> bool:
        return file_hash in self._active

    def claim(self, file_hash: str) -> None:
        """Mark `file_hash` as merging or raise MergeInProgressError."""
        if file_hash in self._active:
            logger.warning("Rejected concurrent merge for %s", file_hash)
            raise MergeInProgressError(file_hash=file_hash)
        self._active.add(file_hash)

    def release(self, file_hash: str) -> None:
        self._active.discard(file_hash)

    @asynccontextmanager
    async def hold(self, file_hash: str) -> AsyncIterator[None]:
        self.claim(file_hash)
        try:
            yield
        finally:
            self.release(file_hash)


merge_locks = MergeLockRegistry()
