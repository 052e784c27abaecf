"""
MediaHost Backend — Chunked Upload Service (Pipeline Orchestrator)
====================================================================

What:  Resumable uploads: fragment ingestion, completeness query, merge,
       and the expired-fragment sweep.
Who:   Called by the /api/chunk route handlers.

Merge Pipeline (POST /api/chunk/merge):
    ┌──────────┐   ┌───────────┐   ┌─────────┐   ┌──────────┐   ┌────────┐   ┌─────────┐
    │  Auth +  │──▶│ Preflight │──▶│ Concat  │──▶│ Checksum │──▶│  Push  │──▶│ Record  │
    │  Claim   │   │ 0..N-1    │   │ in order│   │ (opt.)   │   │  (S3)  │   │  (DB)   │
    └──────────┘   └───────────┘   └─────────┘   └──────────┘   └────────┘   └─────────┘
                                                                                  │
                                                         cleanup (best effort) ◀──┘

    Hard failures (nothing recorded, fragments kept so the merge can be retried):
        missing fragment  → IncompleteUploadError
        checksum mismatch → IntegrityError (merged artifact deleted)
        push failed       → StorageError   (merged artifact kept; the sweep reclaims it)
        record failed     → DatabaseError  (stored object deleted again)

    Soft failures (logged only): statistics insert, fragment/artifact cleanup.
"""

import logging
import time
from typing import Any, Optional

import aiofiles.os
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import CurrentUser
from app.config import settings
from app.exceptions import (
    IncompleteUploadError,
    IntegrityError,
    InvalidRequestError,
    StorageError,
    UnauthorizedError,
)
from app.schemas.upload import (
    ChunkCleanupResponse,
    ChunkUploadResponse,
    ChunkVerifyResponse,
    StoredFileResponse,
)
from app.services.chunk_store import chunk_store, md5_bytes, md5_file, validate_fingerprint
from app.services.image_service import image_service, safe_file_name
from app.services.merge_lock import merge_locks

logger = logging.getLogger(__name__)


def _require_int(value: Optional[int], field: str, minimum: int) -> int:
    if value is None:
        raise InvalidRequestError(message=f"{field} is required", field=field)
    if value < minimum:
        raise InvalidRequestError(message=f"{field} must be >= {minimum}", field=field)
    return value


def _optional_checksum(value: Any, field: str) -> Optional[str]:
    """A client-supplied hex digest, or None when the check was not requested."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidRequestError(message=f"{field} must be a hex string", field=field)
    return value.strip()


def _checksums_match(expected: str, actual: str) -> bool:
    return expected.lower() == actual.lower()


class UploadService:
    """
    Stateless orchestrator over ChunkStore, ImageService and the merge lock.

    Fragment state lives entirely on disk; nothing here is per-session.
    """

    # ── Fragment ingestion ────────────────────────────────────────────────

    async def upload_chunk(
        self,
        file_hash: Optional[str],
        chunk_index: Optional[int],
        chunk_total: Optional[int],
        content: Optional[bytes],
        chunk_md5: Any = None,
    ) -> ChunkUploadResponse:
        """
        Store one fragment of `file_hash`.

        Re-uploading an index replaces the earlier bytes; the next merge uses
        the latest upload.

        Raises:
            InvalidRequestError: missing/invalid fields, index out of range,
                fragment empty or larger than max_chunk_size.
            IntegrityError: `chunk_md5` given and not matching; nothing is written.
            FileStorageError: the fragment could not be written to disk.
        """
        file_hash = validate_fingerprint(file_hash)
        total = _require_int(chunk_total, "chunkTotal", 1)
        index = _require_int(chunk_index, "chunkIndex", 0)
        if index >= total:
            raise InvalidRequestError(
                message=f"chunkIndex {index} is out of range for chunkTotal {total}",
                field="chunkIndex",
            )
        if content is None:
            raise InvalidRequestError(message="file is required", field="file")
        chunk_md5 = _optional_checksum(chunk_md5, "chunkMD5")
        if len(content) > settings.max_chunk_size:
            raise InvalidRequestError(
                message=f"Chunk exceeds the maximum size of {settings.max_chunk_size} bytes",
                field="file",
                context={"size": len(content)},
            )

        if chunk_md5:
            actual = md5_bytes(content)
            if not _checksums_match(chunk_md5, actual):
                logger.warning(
                    "Chunk checksum mismatch: fileHash=%s chunkIndex=%d expected=%s actual=%s",
                    file_hash,
                    index,
                    chunk_md5,
                    actual,
                )
                raise IntegrityError(
                    message="Chunk checksum verification failed; the chunk may be corrupted",
                    expected=chunk_md5,
                    actual=actual,
                    context={"file_hash": file_hash, "chunk_index": index},
                )

        await chunk_store.write_chunk(file_hash, index, content)
        logger.info(
            "Chunk stored: fileHash=%s chunkIndex=%d/%d size=%d bytes",
            file_hash,
            index,
            total,
            len(content),
        )
        return ChunkUploadResponse(file_hash=file_hash, chunk_index=index)

    # ── Completeness query ────────────────────────────────────────────────

    async def verify_chunks(
        self, file_hash: Optional[str], chunk_total: Optional[int]
    ) -> ChunkVerifyResponse:
        """
        Report which fragment indices in [0, chunk_total) are on disk.

        Read-only snapshot; fragments arriving concurrently may or may not be
        included.
        """
        file_hash = validate_fingerprint(file_hash)
        total = _require_int(chunk_total, "chunkTotal", 1)

        present = await chunk_store.present_indices(file_hash, total)
        is_complete = len(present) == total
        logger.info(
            "Verified chunks: fileHash=%s uploaded=%d/%d complete=%s",
            file_hash,
            len(present),
            total,
            is_complete,
        )
        return ChunkVerifyResponse(
            file_hash=file_hash,
            uploaded_chunks=present,
            is_complete=is_complete,
        )

    # ── Merge ─────────────────────────────────────────────────────────────

    async def merge_chunks(
        self,
        db: AsyncSession,
        user: Optional[CurrentUser],
        file_hash: Optional[str],
        file_name: Optional[str],
        chunk_total: Optional[int],
        file_md5: Any = None,
        description: Any = None,
        ip: Optional[str] = None,
    ) -> StoredFileResponse:
        """
        Merge every fragment of `file_hash` into one file and persist it.

        Fragments and the merged artifact are removed before the merge lock is
        released, so a repeated merge of the same fingerprint finds nothing to
        merge instead of storing the file a second time.

        Args:
            user: Verified caller; None means unauthenticated.

        Returns:
            The created Stored File Record.

        Raises:
            UnauthorizedError: `user` is None. Nothing is touched.
            InvalidRequestError: missing or mistyped fileHash / fileName /
                chunkTotal / fileMD5 / description.
            MergeInProgressError: another merge of `file_hash` is running.
            IncompleteUploadError: a fragment index is missing.
            IntegrityError: `file_md5` given and not matching the merged bytes.
            StorageError: the push to object storage failed.
            DatabaseError: the metadata row could not be created.
        """
        if user is None:
            logger.warning("Rejected unauthenticated merge request: fileHash=%s", file_hash)
            raise UnauthorizedError(message="Login is required to merge uploaded chunks")

        file_hash = validate_fingerprint(file_hash)
        name = safe_file_name(file_name)
        total = _require_int(chunk_total, "chunkTotal", 1)
        file_md5 = _optional_checksum(file_md5, "fileMD5")
        if description is not None and not isinstance(description, str):
            raise InvalidRequestError(message="description must be a string", field="description")

        async with merge_locks.hold(file_hash):
            record = await self._merge_locked(
                db,
                user,
                file_hash,
                name,
                total,
                file_md5=file_md5,
                description=description,
                ip=ip,
            )
            await self.cleanup_after_merge(file_hash, total)
        return record

    async def _merge_locked(
        self,
        db: AsyncSession,
        user: CurrentUser,
        file_hash: str,
        name: str,
        total: int,
        file_md5: Optional[str],
        description: Optional[str],
        ip: Optional[str],
    ) -> StoredFileResponse:
        start = time.perf_counter()
        logger.info(
            "Merge started: fileHash=%s fileName=%s chunkTotal=%d user=%s",
            file_hash,
            name,
            total,
            user.username,
        )

        # ── Step 1: Preflight: every index must exist ────────────────────
        missing = await chunk_store.first_missing_index(file_hash, total)
        if missing is not None:
            logger.warning("Merge aborted, chunk missing: fileHash=%s chunkIndex=%d", file_hash, missing)
            raise IncompleteUploadError(missing_index=missing, context={"file_hash": file_hash})

        # ── Step 2: Concatenate in ascending index order ──────────────────
        merged_path = await chunk_store.concatenate(file_hash, total)
        size = (await aiofiles.os.stat(merged_path)).st_size
        logger.info("Chunks merged into temporary file: fileHash=%s size=%d bytes", file_hash, size)

        # ── Step 3: Whole-file checksum ───────────────────────────────────
        if file_md5:
            actual = await md5_file(merged_path)
            if not _checksums_match(file_md5, actual):
                await chunk_store.remove(merged_path)
                logger.warning(
                    "Merged file checksum mismatch: fileHash=%s expected=%s actual=%s",
                    file_hash,
                    file_md5,
                    actual,
                )
                raise IntegrityError(
                    message="Merged file checksum verification failed; the file may be corrupted",
                    expected=file_md5,
                    actual=actual,
                    context={"file_hash": file_hash},
                )
            logger.info("Merged file checksum verified: %s", actual)

        # ── Steps 4-6: Push, record, statistics ───────────────────────────
        try:
            record = await image_service.persist_file(
                db,
                owner=user,
                source=merged_path,
                file_name=name,
                size=size,
                description=description,
                ip=ip,
            )
        except StorageError:
            logger.error(
                "Merge failed at object storage: fileHash=%s; chunks and merged file kept for retry",
                file_hash,
            )
            raise

        logger.info(
            "Merge completed: fileHash=%s id=%s in %.0fms",
            file_hash,
            record.id,
            (time.perf_counter() - start) * 1000,
        )

        return record

    async def cleanup_after_merge(self, file_hash: str, total: int) -> None:
        """
        Delete the fragments of a merged upload, then the merged artifact.

        Best effort: every failure is logged, nothing is raised.
        """
        try:
            removed = await chunk_store.remove_chunks(file_hash, total)
            await chunk_store.remove(chunk_store.merged_path(file_hash))
            logger.info("Cleaned up %d/%d chunks for fileHash=%s", removed, total, file_hash)
        except Exception as e:
            logger.error("Cleanup after merge failed for fileHash=%s: %s", file_hash, e)

    # ── Expired fragment sweep ────────────────────────────────────────────

    async def cleanup_expired(self, expire_hours: Optional[float] = None) -> ChunkCleanupResponse:
        """
        Delete every file in the chunk directory older than `expire_hours`.

        This is the only garbage collection for abandoned uploads; it has to
        be triggered externally (DELETE /api/chunk/cleanup from a scheduler).
        """
        hours = settings.chunk_expire_hours if expire_hours is None else expire_hours
        if hours <= 0:
            raise InvalidRequestError(message="expireHours must be greater than 0", field="expireHours")

        logger.info("Sweeping expired chunks: expireHours=%s", hours)
        deleted = await chunk_store.sweep_expired(hours * 3600)
        logger.info("Expired chunk sweep finished: %d files deleted", deleted)
        return ChunkCleanupResponse(deleted_count=deleted)


upload_service = UploadService()
