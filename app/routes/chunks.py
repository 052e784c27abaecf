"""
MediaHost Backend — Chunked Upload Routes
===========================================

What:  HTTP surface of the resumable upload pipeline.

    POST   /api/chunk/upload   multipart: file, fileHash, chunkIndex, chunkTotal, chunkMD5?
    GET    /api/chunk/verify   query: fileHash, chunkTotal
    POST   /api/chunk/merge    form or JSON: fileHash, fileName, chunkTotal, fileMD5?, description?
    DELETE /api/chunk/cleanup  query: expireHours?

Client flow:
    1. Slice the file, compute a fingerprint (e.g. MD5 of the whole file)
    2. GET /verify to learn which chunks the server already has
    3. POST /upload for every missing chunk (any order, retries allowed)
    4. POST /merge once /verify reports isComplete

Routes stay thin: field extraction here, all rules in UploadService.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import CurrentUser, get_current_user, require_user
from app.database import get_db_session
from app.exceptions import InvalidRequestError
from app.schemas.upload import (
    ChunkCleanupResponse,
    ChunkUploadResponse,
    ChunkVerifyResponse,
    ErrorResponse,
    StoredFileResponse,
)
from app.services.upload_service import upload_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chunk", tags=["Chunked Upload"])


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.post(
    "/upload",
    response_model=ChunkUploadResponse,
    responses={
        400: {"description": "Missing fields or checksum mismatch", "model": ErrorResponse},
        401: {"description": "Not authenticated", "model": ErrorResponse},
    },
    summary="Upload one chunk of a file",
)
async def upload_chunk(
    file: Optional[UploadFile] = File(default=None, description="Chunk bytes"),
    file_hash: Optional[str] = Form(default=None, alias="fileHash"),
    chunk_index: Optional[int] = Form(default=None, alias="chunkIndex"),
    chunk_total: Optional[int] = Form(default=None, alias="chunkTotal"),
    chunk_md5: Optional[str] = Form(default=None, alias="chunkMD5"),
    user: CurrentUser = Depends(require_user),
) -> ChunkUploadResponse:
    content = None
    if file is not None:
        try:
            content = await file.read()
        finally:
            await file.close()

    return await upload_service.upload_chunk(
        file_hash=file_hash,
        chunk_index=chunk_index,
        chunk_total=chunk_total,
        content=content,
        chunk_md5=chunk_md5,
    )


@router.get(
    "/verify",
    response_model=ChunkVerifyResponse,
    responses={400: {"description": "Missing fields", "model": ErrorResponse}},
    summary="List the chunks already received for a file",
)
async def verify_chunks(
    file_hash: Optional[str] = Query(default=None, alias="fileHash"),
    chunk_total: Optional[int] = Query(default=None, alias="chunkTotal"),
) -> ChunkVerifyResponse:
    return await upload_service.verify_chunks(file_hash, chunk_total)


async def _merge_fields(request: Request) -> Dict[str, Any]:
    """Merge parameters from a JSON body or a form body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequestError(message="Request body is not valid JSON")
        if not isinstance(body, dict):
            raise InvalidRequestError(message="Request body must be a JSON object")
        return body
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _optional_int(value: Any, field: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise InvalidRequestError(message=f"{field} must be an integer", field=field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(message=f"{field} must be an integer", field=field)


@router.post(
    "/merge",
    response_model=StoredFileResponse,
    responses={
        400: {"description": "Missing fields, missing chunk or checksum mismatch", "model": ErrorResponse},
        401: {"description": "Not authenticated", "model": ErrorResponse},
        409: {"description": "Merge already in progress", "model": ErrorResponse},
        502: {"description": "Object storage failure", "model": ErrorResponse},
    },
    summary="Merge all chunks into the final file",
)
async def merge_chunks(
    request: Request,
    user: Optional[CurrentUser] = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> StoredFileResponse:
    fields = await _merge_fields(request)
    return await upload_service.merge_chunks(
        db=db,
        user=user,
        file_hash=fields.get("fileHash"),
        file_name=fields.get("fileName"),
        chunk_total=_optional_int(fields.get("chunkTotal"), "chunkTotal"),
        file_md5=fields.get("fileMD5"),
        description=fields.get("description"),
        ip=client_ip(request),
    )


@router.delete(
    "/cleanup",
    response_model=ChunkCleanupResponse,
    responses={401: {"description": "Not authenticated", "model": ErrorResponse}},
    summary="Delete chunk files older than expireHours",
)
async def cleanup_expired(
    expire_hours: Optional[float] = Query(default=None, alias="expireHours"),
    user: CurrentUser = Depends(require_user),
) -> ChunkCleanupResponse:
    logger.info("Expired chunk sweep requested by %s", user.username)
    return await upload_service.cleanup_expired(expire_hours)
