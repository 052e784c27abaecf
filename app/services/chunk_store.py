"""
MediaHost Backend — Fragment Store
====================================

What:  File-system layer for chunked uploads: fragment files, the transient
       merged artifact, and the expiry sweep.
How:   All fragments live flat in one directory (settings.chunk_path):

           chunks/
           ├── 9f86d081_0          ← fragment 0 of fingerprint 9f86d081
           ├── 9f86d081_1
           ├── 9f86d081_2
           └── 9f86d081.merged     ← transient merged artifact

       There is no session record: an upload "session" is the set of files
       sharing a fingerprint prefix.

Safety:
    - Fingerprints are restricted to [A-Za-z0-9_-], so a fingerprint can never
      escape the chunk directory.
    - Fragment writes go to a unique temporary file first and are moved into
      place with os.replace(), so a reader never sees a half-written fragment.
"""

import hashlib
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

import aiofiles
import aiofiles.os
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.exceptions import FileStorageError, IncompleteUploadError, InvalidRequestError

logger = logging.getLogger(__name__)

FINGERPRINT_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

MERGED_SUFFIX = ".merged"
PARTIAL_SUFFIX = ".part"

# 1MB read size for streaming hashes and concatenation
READ_BLOCK_SIZE = 1024 * 1024


def md5_bytes(content: bytes) -> str:
    """Hex MD5 of an in-memory payload (integrity check, not security)."""
    return hashlib.md5(content, usedforsecurity=False).hexdigest()


async def md5_file(path: Union[str, Path]) -> str:
    """Hex MD5 of a file, streamed in blocks so large merged videos stay off the heap."""
    digest = hashlib.md5(usedforsecurity=False)
    async with aiofiles.open(path, "rb") as f:
        while True:
            block = await f.read(READ_BLOCK_SIZE)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


def validate_fingerprint(file_hash: Any) -> str:
    """Reject missing fingerprints and anything that is not a safe file name stem."""
    if file_hash is None or file_hash == "":
        raise InvalidRequestError(message="fileHash is required", field="fileHash")
    if not isinstance(file_hash, str) or not FINGERPRINT_PATTERN.fullmatch(file_hash):
        raise InvalidRequestError(
            message="fileHash may only contain letters, digits, '-' and '_' (max 128 chars)",
            field="fileHash",
        )
    return file_hash


class ChunkStore:
    """
    Owns the fragment directory.

    Every public method is safe to call concurrently from different requests:
    fragment keys are distinct per (fingerprint, index) and writes are
    atomic replaces.
    """

    def __init__(self, chunk_dir: Optional[Union[str, Path]] = None):
        self.chunk_dir = Path(chunk_dir).resolve() if chunk_dir else settings.chunk_path
        self.chunk_dir.mkdir(parents=True, exist_ok=True)
        logger.info("ChunkStore initialized with chunk_dir=%s", self.chunk_dir)

    # ── Paths ─────────────────────────────────────────────────────────────

    def chunk_path(self, file_hash: str, index: int) -> Path:
        return self.chunk_dir / f"{file_hash}_{index}"

    def merged_path(self, file_hash: str) -> Path:
        return self.chunk_dir / f"{file_hash}{MERGED_SUFFIX}"

    # ── Fragments ─────────────────────────────────────────────────────────

    async def write_chunk(self, file_hash: str, index: int, content: bytes) -> Path:
        """
        Persist one fragment, replacing any earlier upload of the same index.

        The bytes are written to "<target>.<uuid>.part" and then renamed over
        the target. A crash mid-write leaves only a .part file, which the
        expiry sweep removes.

        Raises:
            FileStorageError: the chunk directory is not writable.
        """
        target = self.chunk_path(file_hash, index)
        tmp = target.with_name(f"{target.name}.{uuid.uuid4().hex}{PARTIAL_SUFFIX}")

        try:
            self.chunk_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(content)
                await f.flush()
                await run_in_threadpool(os.fsync, f.fileno())
            await aiofiles.os.replace(tmp, target)
        except OSError as e:
            logger.error("Failed to store chunk %s_%d: %s", file_hash, index, e)
            await self.remove(tmp)
            raise FileStorageError(
                message="Failed to save the uploaded chunk. Please try again.",
                context={"path": str(target), "os_error": str(e)},
            )

        return target

    async def chunk_exists(self, file_hash: str, index: int) -> bool:
        return await aiofiles.os.path.isfile(self.chunk_path(file_hash, index))

    async def present_indices(self, file_hash: str, total: int) -> List[int]:
        """Indices in [0, total) whose fragment file currently exists, ascending."""
        present = []
        for index in range(total):
            if await self.chunk_exists(file_hash, index):
                present.append(index)
        return present

    async def first_missing_index(self, file_hash: str, total: int) -> Optional[int]:
        for index in range(total):
            if not await self.chunk_exists(file_hash, index):
                return index
        return None

    # ── Merge ─────────────────────────────────────────────────────────────

    async def concatenate(self, file_hash: str, total: int) -> Path:
        """
        Append fragments 0..total-1, in index order, into the merged artifact.

        The output is flushed and fsync'ed before returning, so the caller can
        hash or upload it immediately.

        Raises:
            IncompleteUploadError: a fragment disappeared while copying (e.g.
                removed by a concurrent sweep). The partial output is deleted.
            FileStorageError: any other I/O failure. The partial output is deleted.
        """
        output = self.merged_path(file_hash)
        index = 0

        try:
            async with aiofiles.open(output, "wb") as out:
                for index in range(total):
                    async with aiofiles.open(self.chunk_path(file_hash, index), "rb") as chunk:
                        while True:
                            block = await chunk.read(READ_BLOCK_SIZE)
                            if not block:
                                break
                            await out.write(block)
                await out.flush()
                await run_in_threadpool(os.fsync, out.fileno())
        except FileNotFoundError:
            await self.remove(output)
            logger.warning("Chunk %s_%d vanished during merge", file_hash, index)
            raise IncompleteUploadError(missing_index=index, context={"file_hash": file_hash})
        except OSError as e:
            await self.remove(output)
            logger.error("Failed to merge chunks for %s: %s", file_hash, e)
            raise FileStorageError(
                message="Failed to merge the uploaded chunks. Please try again.",
                context={"file_hash": file_hash, "os_error": str(e)},
            )

        return output

    # ── Cleanup ───────────────────────────────────────────────────────────

    async def remove(self, path: Union[str, Path]) -> bool:
        """
        Best-effort delete. Returns True if the file was removed.

        A missing file is not an error; any other failure is logged and
        swallowed because cleanup never decides the outcome of a request.
        """
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Failed to remove %s: %s", Path(path).name, e)
            return False

    async def remove_chunks(self, file_hash: str, total: int) -> int:
        removed = 0
        for index in range(total):
            if await self.remove(self.chunk_path(file_hash, index)):
                removed += 1
        return removed

    def _entries(self) -> Iterable[os.DirEntry]:
        with os.scandir(self.chunk_dir) as it:
            return [entry for entry in it if entry.is_file(follow_symlinks=False)]

    async def sweep_expired(self, max_age_seconds: float, now: Optional[float] = None) -> int:
        """
        Delete every file in the chunk directory older than `max_age_seconds`.

        Age is measured from the file's mtime. A file whose age equals the
        threshold is kept; only strictly older files are deleted. Fragments,
        merged artifacts left behind by failed pushes and stray .part files
        are all covered.

        Returns:
            Number of files deleted. Files that cannot be stat'ed or removed
            are logged and skipped.
        """
        now = time.time() if now is None else now
        cutoff = now - max_age_seconds
        deleted = 0

        try:
            entries = await run_in_threadpool(self._entries)
        except FileNotFoundError:
            return 0

        for entry in entries:
            try:
                mtime = (await aiofiles.os.stat(entry.path, follow_symlinks=False)).st_mtime
            except OSError as e:
                logger.warning("Sweep: cannot stat %s: %s", entry.name, e)
                continue

            if mtime < cutoff:
                if await self.remove(entry.path):
                    deleted += 1
                    logger.debug("Sweep: removed expired file %s", entry.name)

        return deleted


# ── Singleton Instance ────────────────────────────────────────────────────
chunk_store = ChunkStore()
