"""
MediaHost Backend — Chunked Upload Service Unit Tests
=======================================================

What:  Tests for UploadService: ingestion, completeness query, merge, sweep.
How:   Real ChunkStore on a temp directory, in-memory object storage and a
       mock DB session (see conftest.py `pipeline`).

What we test:
    ✅ Fragment checksum rejection leaves nothing on disk
    ✅ Out-of-order upload merges to the original bytes
    ✅ Missing fragment (first / middle / last) aborts before any side effect
    ✅ Whole-file checksum mismatch stores nothing
    ✅ Object storage failure keeps fragments for a retry
    ✅ Record failure deletes the stored object again
    ✅ Statistics failure does not fail the merge
    ✅ Unauthenticated merge and concurrent merge are rejected
    ✅ Mistyped merge fields are rejected before any file is touched
    ✅ Cleanup finishes under the merge lock; a repeated merge stores nothing
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.exceptions import (
    DatabaseError,
    IncompleteUploadError,
    IntegrityError,
    InvalidRequestError,
    MergeInProgressError,
    StorageError,
    UnauthorizedError,
)
from app.services.chunk_store import md5_bytes
from app.services.merge_lock import MergeLockRegistry
from app.services.upload_service import UploadService

PARTS = [b"The quick ", b"brown fox ", b"jumps"]
FULL = b"".join(PARTS)


async def upload_all(service, file_hash, parts, order=None):
    for index in order or range(len(parts)):
        await service.upload_chunk(file_hash, index, len(parts), parts[index])


class TestUploadChunk:

    def setup_method(self):
        self.service = UploadService()

    @pytest.mark.asyncio
    async def test_stores_fragment(self, pipeline):
        store, _ = pipeline

        result = await self.service.upload_chunk("abc123", 0, 3, b"data")

        assert result.file_hash == "abc123"
        assert result.chunk_index == 0
        assert await store.chunk_exists("abc123", 0)

    @pytest.mark.asyncio
    async def test_matching_checksum_is_case_insensitive(self, pipeline):
        store, _ = pipeline

        await self.service.upload_chunk("abc123", 0, 1, b"data", chunk_md5=md5_bytes(b"data").upper())

        assert await store.chunk_exists("abc123", 0)

    @pytest.mark.asyncio
    async def test_checksum_mismatch_writes_nothing(self, pipeline):
        store, _ = pipeline

        with pytest.raises(IntegrityError):
            await self.service.upload_chunk("abc123", 0, 1, b"data", chunk_md5=md5_bytes(b"other"))

        assert not await store.chunk_exists("abc123", 0)
        verify = await self.service.verify_chunks("abc123", 1)
        assert verify.uploaded_chunks == []

    @pytest.mark.asyncio
    async def test_non_string_checksum_rejected(self, pipeline):
        store, _ = pipeline

        with pytest.raises(InvalidRequestError) as exc_info:
            await self.service.upload_chunk("abc123", 0, 1, b"data", chunk_md5=12345)

        assert exc_info.value.field == "chunkMD5"
        assert not await store.chunk_exists("abc123", 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "file_hash, index, total, content, field",
        [
            (None, 0, 1, b"x", "fileHash"),
            ("abc123", None, 1, b"x", "chunkIndex"),
            ("abc123", 0, None, b"x", "chunkTotal"),
            ("abc123", 0, 0, b"x", "chunkTotal"),
            ("abc123", -1, 2, b"x", "chunkIndex"),
            ("abc123", 2, 2, b"x", "chunkIndex"),
            ("abc123", 0, 1, None, "file"),
        ],
    )
    async def test_invalid_fields(self, pipeline, file_hash, index, total, content, field):
        with pytest.raises(InvalidRequestError) as exc_info:
            await self.service.upload_chunk(file_hash, index, total, content)

        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_oversized_fragment_rejected(self, pipeline):
        store, _ = pipeline

        with patch.object(settings, "max_chunk_size", 4):
            with pytest.raises(InvalidRequestError):
                await self.service.upload_chunk("abc123", 0, 1, b"12345")

        assert not await store.chunk_exists("abc123", 0)

    @pytest.mark.asyncio
    async def test_reupload_replaces_fragment(self, pipeline):
        store, _ = pipeline

        await self.service.upload_chunk("abc123", 0, 1, b"old")
        await self.service.upload_chunk("abc123", 0, 1, b"new")

        assert store.chunk_path("abc123", 0).read_bytes() == b"new"


class TestVerifyChunks:

    def setup_method(self):
        self.service = UploadService()

    @pytest.mark.asyncio
    async def test_partial_upload(self, pipeline):
        await self.service.upload_chunk("abc123", 2, 3, b"c")
        await self.service.upload_chunk("abc123", 0, 3, b"a")

        result = await self.service.verify_chunks("abc123", 3)

        assert result.uploaded_chunks == [0, 2]
        assert result.is_complete is False

    @pytest.mark.asyncio
    async def test_complete_upload(self, pipeline):
        await upload_all(self.service, "abc123", PARTS)

        result = await self.service.verify_chunks("abc123", 3)

        assert result.uploaded_chunks == [0, 1, 2]
        assert result.is_complete is True

    @pytest.mark.asyncio
    async def test_unknown_fingerprint(self, pipeline):
        result = await self.service.verify_chunks("never-seen", 4)

        assert result.uploaded_chunks == []
        assert result.is_complete is False

    @pytest.mark.asyncio
    async def test_missing_total(self, pipeline):
        with pytest.raises(InvalidRequestError):
            await self.service.verify_chunks("abc123", None)


class TestMergeChunks:

    def setup_method(self):
        self.service = UploadService()
        self.locks = MergeLockRegistry()
        self._patcher = patch("app.services.upload_service.merge_locks", self.locks)
        self._patcher.start()

    def teardown_method(self):
        self._patcher.stop()

    async def merge(self, db, user, **overrides):
        fields = {
            "file_hash": "abc123",
            "file_name": "fox.mp4",
            "chunk_total": len(PARTS),
        }
        fields.update(overrides)
        return await self.service.merge_chunks(db=db, user=user, **fields)

    @pytest.mark.asyncio
    async def test_out_of_order_upload_merges_original_bytes(
        self, pipeline, mock_db_session, current_user
    ):
        store, storage = pipeline
        await upload_all(self.service, "abc123", PARTS, order=[1, 0, 2])

        record = await self.merge(
            mock_db_session,
            current_user,
            file_md5=md5_bytes(FULL),
            description="a fox",
            ip="10.0.0.1",
        )

        assert record.name == "fox.mp4"
        assert record.size == len(FULL)
        assert record.mime_type == "video/mp4"
        assert record.owner_id == current_user.id
        assert record.description == "a fox"

        (key, stored), = storage.objects.items()
        assert stored == FULL
        assert key.startswith("alice/") and key.endswith("_fox.mp4")
        assert storage.content_types[key] == "video/mp4"
        assert record.url == f"https://cdn.example.test/{key}"

        # Fragments and merged artifact cleaned up
        assert await store.present_indices("abc123", 3) == []
        assert not store.merged_path("abc123").exists()
        # StoredFile row and UploadRecord row
        assert mock_db_session.add.call_count == 2

    @pytest.mark.asyncio
    async def test_merge_without_checksum(self, pipeline, mock_db_session, current_user):
        _, storage = pipeline
        await upload_all(self.service, "abc123", PARTS)

        record = await self.merge(mock_db_session, current_user)

        assert record.size == len(FULL)
        assert list(storage.objects.values()) == [FULL]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", [0, 1, 2])
    async def test_missing_fragment_aborts_without_side_effects(
        self, pipeline, mock_db_session, current_user, missing
    ):
        store, storage = pipeline
        present = [i for i in range(3) if i != missing]
        for index in present:
            await self.service.upload_chunk("abc123", index, 3, PARTS[index])

        with pytest.raises(IncompleteUploadError) as exc_info:
            await self.merge(mock_db_session, current_user)

        assert exc_info.value.missing_index == missing
        assert exc_info.value.details == {"missing_index": missing}
        assert await store.present_indices("abc123", 3) == present
        assert not store.merged_path("abc123").exists()
        assert storage.objects == {}
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_checksum_mismatch_stores_nothing(self, pipeline, mock_db_session, current_user):
        store, storage = pipeline
        await upload_all(self.service, "abc123", PARTS)

        with pytest.raises(IntegrityError):
            await self.merge(mock_db_session, current_user, file_md5=md5_bytes(b"something else"))

        assert storage.objects == {}
        assert not store.merged_path("abc123").exists()
        assert await store.present_indices("abc123", 3) == [0, 1, 2]
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_fragments(self, pipeline, mock_db_session, current_user):
        store, storage = pipeline
        storage.fail_puts = True
        await upload_all(self.service, "abc123", PARTS)

        with pytest.raises(StorageError):
            await self.merge(mock_db_session, current_user)

        assert await store.present_indices("abc123", 3) == [0, 1, 2]
        assert store.merged_path("abc123").exists()
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_merge_retry_after_storage_failure(self, pipeline, mock_db_session, current_user):
        _, storage = pipeline
        storage.fail_puts = True
        await upload_all(self.service, "abc123", PARTS)
        with pytest.raises(StorageError):
            await self.merge(mock_db_session, current_user)

        storage.fail_puts = False
        record = await self.merge(mock_db_session, current_user)

        assert record.size == len(FULL)
        assert list(storage.objects.values()) == [FULL]

    @pytest.mark.asyncio
    async def test_record_failure_deletes_stored_object(
        self, pipeline, mock_db_session, current_user
    ):
        store, storage = pipeline
        mock_db_session.flush = AsyncMock(side_effect=SQLAlchemyError("insert failed"))
        await upload_all(self.service, "abc123", PARTS)

        with pytest.raises(DatabaseError):
            await self.merge(mock_db_session, current_user)

        assert storage.objects == {}
        assert len(storage.deleted) == 1
        assert await store.present_indices("abc123", 3) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_statistics_failure_is_not_fatal(self, pipeline, mock_db_session, current_user):
        _, storage = pipeline
        # First flush: StoredFile row; second flush: UploadRecord row
        mock_db_session.flush = AsyncMock(side_effect=[None, SQLAlchemyError("stats down")])
        await upload_all(self.service, "abc123", PARTS)

        record = await self.merge(mock_db_session, current_user)

        assert record.size == len(FULL)
        assert len(storage.objects) == 1
        assert storage.deleted == []

    @pytest.mark.asyncio
    async def test_unauthenticated_merge_touches_nothing(self, pipeline, mock_db_session):
        store, storage = pipeline
        await upload_all(self.service, "abc123", PARTS)

        with pytest.raises(UnauthorizedError):
            await self.merge(mock_db_session, None)

        assert await store.present_indices("abc123", 3) == [0, 1, 2]
        assert not store.merged_path("abc123").exists()
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_missing_file_name(self, pipeline, mock_db_session, current_user):
        with pytest.raises(InvalidRequestError) as exc_info:
            await self.merge(mock_db_session, current_user, file_name=None)

        assert exc_info.value.field == "fileName"

    @pytest.mark.asyncio
    async def test_concurrent_merge_rejected(self, pipeline, mock_db_session, current_user):
        _, storage = pipeline
        await upload_all(self.service, "abc123", PARTS)
        self.locks.claim("abc123")

        with pytest.raises(MergeInProgressError):
            await self.merge(mock_db_session, current_user)

        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, pipeline, mock_db_session, current_user):
        with pytest.raises(IncompleteUploadError):
            await self.merge(mock_db_session, current_user)

        assert not self.locks.is_locked("abc123")


    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"file_hash": 123}, "fileHash"),
            ({"file_name": 7}, "fileName"),
            ({"file_md5": 5}, "fileMD5"),
            ({"file_md5": ["abc"]}, "fileMD5"),
            ({"description": {"text": "x"}}, "description"),
        ],
    )
    async def test_mistyped_fields_touch_nothing(
        self, pipeline, mock_db_session, current_user, overrides, field
    ):
        store, storage = pipeline
        await upload_all(self.service, "abc123", PARTS)

        with pytest.raises(InvalidRequestError) as exc_info:
            await self.merge(mock_db_session, current_user, **overrides)

        assert exc_info.value.field == field
        assert not store.merged_path("abc123").exists()
        assert await store.present_indices("abc123", 3) == [0, 1, 2]
        assert storage.objects == {}
        assert not self.locks.is_locked("abc123")

    @pytest.mark.asyncio
    async def test_cleanup_runs_while_lock_is_held(self, pipeline, mock_db_session, current_user):
        store, _ = pipeline
        await upload_all(self.service, "abc123", PARTS)
        lock_states = []
        remove_chunks = store.remove_chunks

        async def tracking_remove(file_hash, total):
            lock_states.append(self.locks.is_locked(file_hash))
            return await remove_chunks(file_hash, total)

        with patch.object(store, "remove_chunks", tracking_remove):
            await self.merge(mock_db_session, current_user)

        assert lock_states == [True]
        assert await store.present_indices("abc123", 3) == []
        assert not store.merged_path("abc123").exists()
        assert not self.locks.is_locked("abc123")

    @pytest.mark.asyncio
    async def test_repeated_merge_stores_once(self, pipeline, mock_db_session, current_user):
        _, storage = pipeline
        await upload_all(self.service, "abc123", PARTS)
        await self.merge(mock_db_session, current_user)

        with pytest.raises(IncompleteUploadError) as exc_info:
            await self.merge(mock_db_session, current_user)

        assert exc_info.value.missing_index == 0
        assert len(storage.objects) == 1
        assert mock_db_session.add.call_count == 2


class TestCleanupExpired:

    def setup_method(self):
        self.service = UploadService()

    @pytest.mark.asyncio
    async def test_default_expiry(self, pipeline):
        store, _ = pipeline
        with patch.object(store, "sweep_expired", AsyncMock(return_value=4)) as sweep:
            result = await self.service.cleanup_expired()

        sweep.assert_awaited_once_with(settings.chunk_expire_hours * 3600)
        assert result.deleted_count == 4

    @pytest.mark.asyncio
    async def test_custom_expiry(self, pipeline):
        store, _ = pipeline
        with patch.object(store, "sweep_expired", AsyncMock(return_value=0)) as sweep:
            await self.service.cleanup_expired(expire_hours=2)

        sweep.assert_awaited_once_with(7200)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hours", [0, -1])
    async def test_non_positive_expiry_rejected(self, pipeline, hours):
        with pytest.raises(InvalidRequestError):
            await self.service.cleanup_expired(expire_hours=hours)
