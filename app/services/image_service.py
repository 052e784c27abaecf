"""
MediaHost Backend — Stored File Service
=========================================

What:  Everything that turns bytes already validated into a durable
       StoredFile: object key generation, the push to object storage, the
       metadata row and the statistics side effect. Also the owner-scoped
       read side (listing, detail) and edits (rename, describe, delete).
Who:   Called by the image routes (single and batch upload) and by
       UploadService at the end of a chunk merge.

Push-then-record ordering:
    1. put object  → StorageError aborts; nothing recorded
    2. insert row  → on failure the object from step 1 is deleted again
                     (compensating delete) and DatabaseError is raised,
                     so no object is left without a metadata row
    3. stats row   → best effort, never fails the upload

Delete ordering (inside one savepoint):
    1. delete row   → DatabaseError; the object is untouched
    2. delete object → StorageError rolls the row delete back, so a record
                       is never lost while its object still exists
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import CurrentUser
from app.config import settings
from app.exceptions import (
    DatabaseError,
    InvalidRequestError,
    MediaHostError,
    NotFoundError,
    StorageError,
)
from app.models.stored_file import StoredFile
from app.schemas.upload import (
    BatchDeleteFailure,
    BatchDeleteItem,
    BatchDeleteResponse,
    BatchUploadFailure,
    BatchUploadResponse,
    StoredFileListResponse,
    StoredFileResponse,
)
from app.services.media_types import ALLOWED_MIME_TYPES, resolve_mime_type
from app.services.s3_service import object_storage
from app.services.stats_service import stats_service

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    "date_desc": desc(StoredFile.created_at),
    "date_asc": asc(StoredFile.created_at),
    "name_asc": asc(StoredFile.name),
    "name_desc": desc(StoredFile.name),
}


def safe_file_name(file_name: Any) -> str:
    """Base name of a client-supplied file name, without any directory part."""
    if file_name is not None and not isinstance(file_name, str):
        raise InvalidRequestError(message="fileName must be a string", field="fileName")
    name = PurePosixPath((file_name or "").replace("\\", "/")).name.strip()
    if not name or name in {".", ".."}:
        raise InvalidRequestError(message="fileName is required", field="fileName")
    return name


def build_storage_key(file_name: str, username: Optional[str] = None) -> str:
    """
    Object key for an upload: "<username>/<8 hex>_<file name>".

    The random prefix keeps two uploads with the same name from overwriting
    each other in the bucket.
    """
    key = f"{uuid.uuid4().hex[:8]}_{safe_file_name(file_name)}"
    if username:
        key = f"{username}/{key}"
    return key


class ImageService:

    async def create_record(
        self,
        db: AsyncSession,
        *,
        owner: CurrentUser,
        name: str,
        description: Optional[str],
        url: str,
        storage_key: str,
        size: int,
        mime_type: str,
    ) -> StoredFile:
        """
        Insert the StoredFile row for an object that is already stored.

        If the insert fails, the stored object is deleted again before
        DatabaseError is raised.
        """
        record = StoredFile(
            id=uuid.uuid4(),
            name=name,
            description=description or "",
            url=url,
            storage_key=storage_key,
            size=size,
            mime_type=mime_type,
            owner_id=owner.id,
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with db.begin_nested():
                db.add(record)
                await db.flush()
        except Exception as e:
            logger.error(
                "Failed to create record for %s, removing stored object: %s",
                storage_key,
                e,
                exc_info=True,
            )
            await self._compensate(storage_key)
            raise DatabaseError(
                message="The file could not be saved. Please try again.",
                context={"storage_key": storage_key, "original_error": type(e).__name__},
            )

        logger.info("Created stored file record %s (%s, %d bytes)", record.id, name, size)
        return record

    async def _compensate(self, storage_key: str) -> None:
        try:
            await object_storage.delete_object(storage_key)
        except StorageError as e:
            # Orphaned object: needs manual cleanup
            logger.error("Compensating delete of %s failed: %s", storage_key, e.context)

    async def persist_file(
        self,
        db: AsyncSession,
        *,
        owner: CurrentUser,
        source: Union[bytes, Path],
        file_name: str,
        size: int,
        description: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> StoredFileResponse:
        """
        Push a file to object storage, record it, and log statistics.

        Args:
            source: In-memory bytes (single upload) or a local path (merged artifact).

        Raises:
            StorageError: object storage write failed (nothing recorded).
            DatabaseError: record creation failed (stored object removed again).
        """
        name = safe_file_name(file_name)
        mime_type = resolve_mime_type(name)
        key = build_storage_key(name, owner.username)

        if isinstance(source, (bytes, bytearray)):
            url = await object_storage.put_bytes(bytes(source), key, mime_type)
        else:
            url = await object_storage.put_file(source, key, mime_type)

        record = await self.create_record(
            db,
            owner=owner,
            name=name,
            description=description,
            url=url,
            storage_key=key,
            size=size,
            mime_type=mime_type,
        )

        await stats_service.record_upload(
            db,
            user_id=owner.id,
            username=owner.username,
            file_size=size,
            mime_type=mime_type,
            ip=ip,
        )

        return StoredFileResponse.model_validate(record)

    # ── Single / batch upload ─────────────────────────────────────────────

    def validate_upload(self, file_name: Optional[str], content: bytes) -> str:
        """Checks name, type and size of a single-shot upload; returns the safe name."""
        name = safe_file_name(file_name)

        if resolve_mime_type(name) not in ALLOWED_MIME_TYPES:
            raise InvalidRequestError(
                message=(
                    f"File type '{PurePosixPath(name).suffix or name}' is not supported. "
                    "Upload an image (jpg, png, gif, webp, avif) or video (mp4, webm, mov)."
                ),
                field="file",
            )
        if not content:
            raise InvalidRequestError(message="The uploaded file is empty", field="file")
        if len(content) > settings.max_file_size:
            max_mb = settings.max_file_size / (1024 * 1024)
            raise InvalidRequestError(
                message=f"File size exceeds the maximum of {max_mb:.0f}MB.",
                field="file",
                context={"size": len(content)},
            )
        return name

    async def upload_file(
        self,
        db: AsyncSession,
        owner: CurrentUser,
        file_name: Optional[str],
        content: bytes,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> StoredFileResponse:
        """
        Single-shot upload. `display_name`, when given, replaces the file name;
        the original extension is kept if the display name has none.
        """
        name = self.validate_upload(file_name, content)
        if display_name:
            display = safe_file_name(display_name)
            if not PurePosixPath(display).suffix:
                display += PurePosixPath(name).suffix
            name = display

        logger.info("Single upload: user=%s name=%s size=%d", owner.username, name, len(content))
        return await self.persist_file(
            db,
            owner=owner,
            source=content,
            file_name=name,
            size=len(content),
            description=description,
            ip=ip,
        )

    async def batch_upload(
        self,
        db: AsyncSession,
        owner: CurrentUser,
        files: Sequence[Tuple[Optional[str], bytes]],
        ip: Optional[str] = None,
    ) -> BatchUploadResponse:
        """
        Upload several files independently.

        A failing file is reported in `failed` and does not stop the others.
        """
        if not files:
            raise InvalidRequestError(message="At least one file is required", field="files")

        uploaded: List[StoredFileResponse] = []
        failed: List[BatchUploadFailure] = []

        for file_name, content in files:
            try:
                uploaded.append(
                    await self.upload_file(db, owner, file_name, content, ip=ip)
                )
            except MediaHostError as e:
                logger.warning("Batch upload: %s failed: %s", file_name, e.message)
                failed.append(
                    BatchUploadFailure(
                        name=file_name or "",
                        error=e.error_code,
                        message=e.message,
                    )
                )

        logger.info(
            "Batch upload by %s: %d stored, %d failed",
            owner.username,
            len(uploaded),
            len(failed),
        )
        return BatchUploadResponse(uploaded=uploaded, failed=failed)

    # ── Read side ─────────────────────────────────────────────────────────

    async def list_files(
        self,
        db: AsyncSession,
        owner_id: str,
        page: int = 1,
        limit: int = 50,
        sort: str = "date_desc",
    ) -> StoredFileListResponse:
        if sort not in SORT_ORDERS:
            raise InvalidRequestError(
                message=f"Invalid sort '{sort}'. Must be one of: {', '.join(SORT_ORDERS)}",
                field="sort",
            )

        query = (
            select(StoredFile)
            .where(StoredFile.owner_id == owner_id)
            .order_by(SORT_ORDERS[sort])
            .offset((page - 1) * limit)
            .limit(limit)
        )
        count_query = select(func.count(StoredFile.id)).where(StoredFile.owner_id == owner_id)

        try:
            items = (await db.execute(query)).scalars().all()
            total = (await db.execute(count_query)).scalar() or 0
        except SQLAlchemyError as e:
            logger.error("Failed to list stored files: %s", e, exc_info=True)
            raise DatabaseError(context={"operation": "list_files"})

        return StoredFileListResponse(
            total=total,
            items=[StoredFileResponse.model_validate(item) for item in items],
            page=page,
            limit=limit,
        )

    async def _owned_record(self, db: AsyncSession, owner_id: str, file_id: uuid.UUID) -> StoredFile:
        """The caller's record, or NotFoundError. Other users' records are not found."""
        try:
            result = await db.execute(
                select(StoredFile).where(StoredFile.id == file_id, StoredFile.owner_id == owner_id)
            )
            record = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch stored file %s: %s", file_id, e, exc_info=True)
            raise DatabaseError(context={"operation": "get_file"})

        if record is None:
            raise NotFoundError(resource="file", resource_id=str(file_id))
        return record

    async def get_file(self, db: AsyncSession, file_id: uuid.UUID, owner_id: str) -> StoredFileResponse:
        record = await self._owned_record(db, owner_id, file_id)
        return StoredFileResponse.model_validate(record)

    # ── Edits ─────────────────────────────────────────────────────────────

    async def update_file(
        self,
        db: AsyncSession,
        owner: CurrentUser,
        file_id: uuid.UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> StoredFileResponse:
        """
        Rename and/or re-describe a record. A blank `name` keeps the current
        one; `description=""` clears the description. The stored object and
        its URL do not change.
        """
        record = await self._owned_record(db, owner.id, file_id)

        if name is not None and name.strip():
            record.name = safe_file_name(name)
        if description is not None:
            record.description = description

        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to update stored file %s: %s", file_id, e, exc_info=True)
            raise DatabaseError(context={"operation": "update_file"})

        logger.info("Updated stored file %s by %s", file_id, owner.username)
        return StoredFileResponse.model_validate(record)

    async def _delete_record(self, db: AsyncSession, record: StoredFile) -> None:
        """
        Remove the row and then the object, both inside one savepoint.

        Raises:
            DatabaseError: the row could not be deleted; the object is untouched.
            StorageError: the object delete failed; the row delete is rolled back.
        """
        try:
            async with db.begin_nested():
                await db.delete(record)
                await db.flush()
                await object_storage.delete_object(record.storage_key)
        except SQLAlchemyError as e:
            logger.error("Failed to delete stored file %s: %s", record.id, e, exc_info=True)
            raise DatabaseError(context={"operation": "delete_file", "id": str(record.id)})

    async def delete_file(self, db: AsyncSession, owner: CurrentUser, file_id: uuid.UUID) -> None:
        record = await self._owned_record(db, owner.id, file_id)
        await self._delete_record(db, record)
        logger.info("Deleted stored file %s (%s) by %s", record.id, record.storage_key, owner.username)

    async def batch_delete(
        self,
        db: AsyncSession,
        owner: CurrentUser,
        file_ids: Sequence[uuid.UUID],
    ) -> BatchDeleteResponse:
        """
        Delete several of the caller's records independently.

        Ids that are unknown or belong to another user are reported in
        `failed` as not_found. If none of the ids resolve, NotFoundError is
        raised; if every resolved record fails to delete, the first failure
        is raised so the request fails as a whole.
        """
        if not file_ids:
            raise InvalidRequestError(message="imageIds must be a non-empty list", field="imageIds")

        unique_ids = list(dict.fromkeys(file_ids))
        try:
            result = await db.execute(
                select(StoredFile).where(
                    StoredFile.id.in_(unique_ids),
                    StoredFile.owner_id == owner.id,
                )
            )
            records: Dict[uuid.UUID, StoredFile] = {r.id: r for r in result.scalars().all()}
        except SQLAlchemyError as e:
            logger.error("Failed to fetch files for batch delete: %s", e, exc_info=True)
            raise DatabaseError(context={"operation": "batch_delete"})

        if not records:
            raise NotFoundError(resource="file", resource_id=", ".join(str(i) for i in unique_ids))

        deleted: List[BatchDeleteItem] = []
        failed: List[BatchDeleteFailure] = []
        first_error: Optional[MediaHostError] = None

        for file_id in unique_ids:
            record = records.get(file_id)
            if record is None:
                failed.append(
                    BatchDeleteFailure(id=file_id, error=NotFoundError.error_code, message="File not found")
                )
                continue
            try:
                await self._delete_record(db, record)
            except MediaHostError as e:
                logger.warning("Batch delete: %s failed: %s", file_id, e.message)
                first_error = first_error or e
                failed.append(
                    BatchDeleteFailure(id=file_id, name=record.name, error=e.error_code, message=e.message)
                )
                continue
            deleted.append(BatchDeleteItem(id=record.id, name=record.name))

        if not deleted and first_error is not None:
            raise first_error

        logger.info(
            "Batch delete by %s: %d deleted, %d failed",
            owner.username,
            len(deleted),
            len(failed),
        )
        return BatchDeleteResponse(deleted=deleted, failed=failed)


image_service = ImageService()
