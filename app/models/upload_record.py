"""
MediaHost Backend — UploadRecord SQLAlchemy Model
===================================================

What:  One row per completed upload, used for usage statistics.
Why:   Stats are aggregated from this append-only log instead of scanning
       stored_files, so deleting a file does not rewrite history.

Writes are best-effort: a failed insert is logged and never fails the
upload that triggered it.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class UploadRecord(Base):
    __tablename__ = "upload_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    file_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # 'image' or 'video', derived from the MIME type prefix
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)

    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (Index("idx_upload_records_file_type", "file_type"),)

    def __repr__(self) -> str:
        return (
            f"<UploadRecord(user='{self.username}', type='{self.file_type}', "
            f"size={self.file_size})>"
        )
