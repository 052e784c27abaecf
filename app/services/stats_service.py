"""
MediaHost Backend — Upload Statistics Service
===============================================

What:  Appends UploadRecord rows after successful uploads and aggregates them
       for the admin dashboard.
Why:   Statistics are a side effect of uploading, never a precondition. A
       failed insert here is logged and swallowed so it cannot roll back an
       upload that already reached object storage.
How:   Each insert runs inside a SAVEPOINT (session.begin_nested()), so a
       failure only discards the statistics row and leaves the surrounding
       transaction, which holds the StoredFile row, intact.
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError
from app.models.upload_record import UploadRecord
from app.schemas.upload import UploadStatsResponse, UploadTypeStats
from app.services.media_types import media_category

logger = logging.getLogger(__name__)


class StatsService:

    async def record_upload(
        self,
        db: AsyncSession,
        user_id: Optional[str],
        username: str,
        file_size: int,
        mime_type: str,
        file_count: int = 1,
        ip: Optional[str] = None,
    ) -> bool:
        """
        Best-effort insert of one UploadRecord.

        Returns:
            True when the row was flushed, False when recording failed (logged).
        """
        file_type = media_category(mime_type)
        try:
            async with db.begin_nested():
                db.add(
                    UploadRecord(
                        user_id=user_id,
                        username=username,
                        file_count=file_count,
                        file_size=file_size,
                        file_type=file_type,
                        ip=ip,
                    )
                )
                await db.flush()
        except Exception as e:
            logger.error(
                "Failed to record upload statistics for user=%s: %s", username, e
            )
            return False

        logger.info(
            "Recorded upload: user=%s type=%s size=%d bytes", username, file_type, file_size
        )
        return True

    async def upload_stats(self, db: AsyncSession) -> UploadStatsResponse:
        """Totals per file type (image / video) across all upload records."""
        query = (
            select(
                UploadRecord.file_type,
                func.count(UploadRecord.id),
                func.coalesce(func.sum(UploadRecord.file_count), 0),
                func.coalesce(func.sum(UploadRecord.file_size), 0),
            )
            .group_by(UploadRecord.file_type)
            .order_by(UploadRecord.file_type)
        )
        try:
            rows = (await db.execute(query)).all()
        except SQLAlchemyError as e:
            logger.error("Failed to aggregate upload statistics: %s", e, exc_info=True)
            raise DatabaseError(context={"operation": "upload_stats"})

        by_type = [
            UploadTypeStats(
                file_type=file_type,
                upload_count=int(count),
                file_count=int(files),
                total_bytes=int(total),
            )
            for file_type, count, files, total in rows
        ]
        return UploadStatsResponse(
            total_uploads=sum(item.upload_count for item in by_type),
            total_bytes=sum(item.total_bytes for item in by_type),
            by_type=by_type,
        )


stats_service = StatsService()
