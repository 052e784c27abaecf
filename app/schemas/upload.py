"""
MediaHost Backend — Pydantic Request/Response Schemas
=======================================================

What:  Pydantic models defining the API contract between frontend and backend.
How:   FastAPI uses these models to serialize responses and generate the
       OpenAPI document.

Field naming:
    Python attributes are snake_case; the wire format is camelCase
    (fileHash, chunkIndex, uploadedChunks, isComplete, deletedCount, ...)
    because the upload client slices files in the browser and speaks camelCase.
    `populate_by_name` lets services construct models with snake_case names.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every response model: camelCase aliases on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ══════════════════════════════════════════════════════════════════════════
# Chunked Upload
# ══════════════════════════════════════════════════════════════════════════


class ChunkUploadResponse(CamelModel):
    """Returned by POST /api/chunk/upload after a fragment is persisted."""

    file_hash: str = Field(description="Fingerprint the fragment belongs to")
    chunk_index: int = Field(description="Index of the stored fragment")


class ChunkVerifyResponse(CamelModel):
    """
    Returned by GET /api/chunk/verify.

    The client re-sends every index in [0, chunkTotal) that is not listed in
    uploadedChunks, then calls merge once isComplete is true.
    """

    file_hash: str = Field(description="Fingerprint that was queried")
    uploaded_chunks: List[int] = Field(description="Indices present on disk, ascending")
    is_complete: bool = Field(description="True when every index is present")


class ChunkCleanupResponse(CamelModel):
    """Returned by DELETE /api/chunk/cleanup."""

    deleted_count: int = Field(description="Number of expired files removed")


# ══════════════════════════════════════════════════════════════════════════
# Stored Files
# ══════════════════════════════════════════════════════════════════════════


class StoredFileResponse(CamelModel):
    """
    The Stored File Record: terminal output of every upload path.

    Built from the StoredFile ORM row via from_attributes.
    """

    id: uuid.UUID = Field(description="Record identifier")
    name: str = Field(description="File name")
    description: str = Field(default="", description="Uploader-supplied description")
    url: str = Field(description="Public or presigned URL of the stored object")
    size: int = Field(description="Size in bytes")
    mime_type: str = Field(description="MIME type resolved from the extension")
    owner_id: str = Field(description="Identifier of the uploading user")
    created_at: datetime = Field(description="Creation time (UTC ISO 8601)")


class StoredFileListResponse(CamelModel):
    """Paginated listing returned by GET /api/images."""

    total: int
    items: List[StoredFileResponse]
    page: int
    limit: int


class BatchUploadFailure(CamelModel):
    name: str
    error: str
    message: str


class BatchUploadResponse(CamelModel):
    """Per-file outcome of POST /api/images/batch-upload."""

    uploaded: List[StoredFileResponse]
    failed: List[BatchUploadFailure]


class UpdateFileRequest(CamelModel):
    """Body of PUT /api/images/{id}. Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, description="New file name; blank keeps the current one")
    description: Optional[str] = Field(default=None, description="New description; \"\" clears it")


class BatchDeleteRequest(CamelModel):
    image_ids: List[uuid.UUID] = Field(min_length=1, description="Records to delete")


class BatchDeleteItem(CamelModel):
    id: uuid.UUID
    name: str


class BatchDeleteFailure(CamelModel):
    id: uuid.UUID
    name: str = ""
    error: str
    message: str


class BatchDeleteResponse(CamelModel):
    """Per-record outcome of POST /api/images/batch-delete."""

    deleted: List[BatchDeleteItem]
    failed: List[BatchDeleteFailure]


# ══════════════════════════════════════════════════════════════════════════
# Statistics
# ══════════════════════════════════════════════════════════════════════════


class UploadTypeStats(CamelModel):
    file_type: str
    upload_count: int
    file_count: int
    total_bytes: int


class UploadStatsResponse(CamelModel):
    """Aggregated upload totals returned by GET /api/stats/uploads."""

    total_uploads: int
    total_bytes: int
    by_type: List[UploadTypeStats]


# ══════════════════════════════════════════════════════════════════════════
# Errors & Health
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "incomplete_upload",
            "message": "Chunk 1 is missing; the file cannot be merged yet",
            "details": {"missing_index": 1},
            "request_id": "3f2a9c1e"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    object_storage: str = Field(description="Object storage status: available, unavailable")
    uptime_seconds: float = Field(description="Seconds since service started")
