"""
MediaHost Backend — Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for every failure the API can report.
Why:   Each exception carries its HTTP status and a machine-readable code, so a
       single global handler (registered in main.py) renders them all in the
       same JSON shape.
How:   Each exception class carries a message and optional context dict.
       `message` is safe to return to the client; `context` is logged and only
       the whitelisted `details` are returned.
Who:   Raised by services, auth dependencies and middleware.

Exception Hierarchy:
    MediaHostError (base)                 → 500 server_error
    ├── InvalidRequestError               → 400 invalid_request
    ├── IntegrityError                    → 400 integrity_error
    ├── IncompleteUploadError             → 400 incomplete_upload
    ├── UnauthorizedError                 → 401 unauthorized
    ├── NotFoundError                     → 404 not_found
    ├── MergeInProgressError              → 409 merge_in_progress
    ├── RateLimitExceededError            → 429 rate_limit_exceeded
    ├── StorageError                      → 502 storage_error
    ├── FileStorageError                  → 500 server_error
    └── DatabaseError                     → 500 server_error

Note: IntegrityError here means a checksum mismatch. It is unrelated to
sqlalchemy.exc.IntegrityError; import it from app.exceptions explicitly.
"""

from typing import Any, Dict, Optional


class MediaHostError(Exception):
    """
    Base exception for all MediaHost application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, NOT returned to client)
        details:  Subset of context that is safe to return to the client
    """

    status_code: int = 500
    error_code: str = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    @property
    def details(self) -> Optional[Dict[str, Any]]:
        return None


class InvalidRequestError(MediaHostError):
    """
    Raised when required fields are missing or malformed.

    When:  Missing fileHash / chunkIndex / chunkTotal / fileName, index out of
           range, unsafe fingerprint characters, oversized fragment, unsupported
           file type on single-shot upload.
    HTTP:  400 Bad Request. Not retried by clients.
    """

    status_code = 400
    error_code = "invalid_request"

    def __init__(
        self,
        message: str = "Request is missing required fields",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field

    @property
    def details(self) -> Optional[Dict[str, Any]]:
        return {"field": self.field} if self.field else None


class IntegrityError(MediaHostError):
    """
    Raised when a checksum does not match the received bytes.

    Applies at two levels:
        - fragment: the fragment is rejected and never written
        - merged artifact: the temporary merged file is deleted, nothing is
          pushed to object storage and no record is created
    HTTP:  400. The client must re-upload.
    """

    status_code = 400
    error_code = "integrity_error"

    def __init__(
        self,
        message: str = "Checksum verification failed; the data may be corrupted",
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"expected": expected, "actual": actual})
        super().__init__(message=message, context=ctx)
        self.expected = expected
        self.actual = actual


class IncompleteUploadError(MediaHostError):
    """
    Raised when a merge is attempted before every fragment index is present.

    The missing index is returned to the client so it can re-send exactly
    that fragment. Fragments already on disk are left untouched.
    """

    status_code = 400
    error_code = "incomplete_upload"

    def __init__(
        self,
        missing_index: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["missing_index"] = missing_index
        super().__init__(
            message=f"Chunk {missing_index} is missing; the file cannot be merged yet",
            context=ctx,
        )
        self.missing_index = missing_index

    @property
    def details(self) -> Optional[Dict[str, Any]]:
        return {"missing_index": self.missing_index}


class UnauthorizedError(MediaHostError):
    """Raised when a protected operation is called without a valid identity."""

    status_code = 401
    error_code = "unauthorized"

    def __init__(
        self,
        message: str = "Authentication is required for this operation",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(MediaHostError):
    """Raised when a requested resource does not exist."""

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class MergeInProgressError(MediaHostError):
    """
    Raised when a merge for the same fingerprint is already running.

    HTTP:  409 Conflict. The client should poll /api/chunk/verify or retry later.
    """

    status_code = 409
    error_code = "merge_in_progress"

    def __init__(
        self,
        file_hash: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["file_hash"] = file_hash
        super().__init__(
            message="A merge for this file is already in progress",
            context=ctx,
        )
        self.file_hash = file_hash


class RateLimitExceededError(MediaHostError):
    """Raised when a client exceeds the per-IP request rate limit."""

    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after

    @property
    def details(self) -> Optional[Dict[str, Any]]:
        return {"retry_after": self.retry_after}


class StorageError(MediaHostError):
    """
    Raised when the durable object store rejects a write or delete.

    What:    put/delete against S3/R2/MinIO failed after retries.
    HTTP:    502 Bad Gateway (the upstream store failed, not this server)

    The merge is not considered successful: no record is created and the
    fragments stay on disk so the client can retry the merge.
    """

    status_code = 502
    error_code = "storage_error"

    def __init__(
        self,
        message: str = "Object storage is temporarily unavailable. Please retry later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(MediaHostError):
    """
    Raised when local file system operations fail.

    When:  Disk full, permission denied, chunk directory not writable.
    HTTP:  500. File system paths are never returned to the client.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(MediaHostError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; the original
    error is logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
