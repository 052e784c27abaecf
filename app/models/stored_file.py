"""
MediaHost Backend — StoredFile SQLAlchemy Model
=================================================

What:  ORM model for the `stored_files` table: one row per file that has been
       persisted to object storage (single upload, batch upload or chunk merge).
Who:   Written by UploadService / ImageService; read by the listing endpoints.

Table Design Rationale:
    - url: What clients render. Either the bucket's public URL or a presigned URL.
    - storage_key: Object key inside the bucket; needed to delete the object later
      without parsing URLs back into keys.
    - size: BIGINT because merged videos easily exceed 2GB.
    - owner_id: Opaque user identifier taken from the verified bearer token.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class StoredFile(Base):
    """
    A file persisted to durable object storage.

    Lifecycle:
        1. Created only after the object store confirmed the write
        2. name / description editable by the owner (PUT /api/images/{id})
        3. Deleted together with its object (DELETE, batch-delete)
    """

    __tablename__ = "stored_files"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique identifier",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Display name (the uploaded file name)",
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Free-form description supplied by the uploader",
    )

    url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Public or presigned URL of the stored object",
    )

    storage_key: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        comment="Object key inside the bucket",
    )

    size: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Size in bytes",
    )

    mime_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="MIME type resolved from the file extension",
    )

    owner_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Identifier of the uploading user",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the record was created (UTC)",
    )

    # Listing is always "files of one owner, newest first"
    __table_args__ = (
        Index("idx_stored_files_owner_created", owner_id, created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<StoredFile(id={self.id}, name='{self.name}', size={self.size})>"
