"""
MediaHost Backend — Media Type Resolution
===========================================

Static extension → MIME table for the formats the gallery can display.
Anything not listed is stored as application/octet-stream.
"""

from pathlib import PurePosixPath

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
}

ALLOWED_MIME_TYPES = frozenset(MIME_TYPES.values())


def resolve_mime_type(filename: str) -> str:
    """MIME type for `filename` based on its (case-insensitive) extension."""
    return MIME_TYPES.get(PurePosixPath(filename).suffix.lower(), DEFAULT_MIME_TYPE)


def media_category(mime_type: str) -> str:
    """'image' or 'video' bucket used by upload statistics."""
    return "image" if mime_type.startswith("image/") else "video"
