"""
MediaHost Backend — Stored File Routes
========================================

    POST /api/images/upload         single file (multipart: file, name?, description?)
    POST /api/images/batch-upload   several files (multipart: files[])
    GET  /api/images                caller's files, paginated
    GET  /api/images/{file_id}      one of the caller's file records
    PUT  /api/images/{file_id}      rename / re-describe (JSON: name?, description?)
    DELETE /api/images/{file_id}    delete record and stored object
    POST /api/images/batch-delete   JSON: imageIds[]
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import CurrentUser, require_user
from app.database import get_db_session
from app.routes.chunks import client_ip
from app.schemas.upload import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    BatchUploadResponse,
    ErrorResponse,
    StoredFileListResponse,
    StoredFileResponse,
    UpdateFileRequest,
)
from app.services.image_service import image_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["Images"])


@router.post(
    "/upload",
    status_code=201,
    response_model=StoredFileResponse,
    responses={
        400: {"description": "Unsupported type, empty or oversized file", "model": ErrorResponse},
        401: {"description": "Not authenticated", "model": ErrorResponse},
        502: {"description": "Object storage failure", "model": ErrorResponse},
    },
    summary="Upload a single image or video",
)
async def upload_image(
    request: Request,
    file: UploadFile = File(...),
    name: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> StoredFileResponse:
    try:
        content = await file.read()
    finally:
        await file.close()

    return await image_service.upload_file(
        db,
        owner=user,
        file_name=file.filename,
        content=content,
        display_name=name,
        description=description,
        ip=client_ip(request),
    )


@router.post(
    "/batch-upload",
    response_model=BatchUploadResponse,
    responses={401: {"description": "Not authenticated", "model": ErrorResponse}},
    summary="Upload several images or videos",
)
async def batch_upload(
    request: Request,
    files: List[UploadFile] = File(...),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> BatchUploadResponse:
    payload = []
    for upload in files:
        try:
            payload.append((upload.filename, await upload.read()))
        finally:
            await upload.close()

    return await image_service.batch_upload(db, user, payload, ip=client_ip(request))


@router.get(
    "",
    response_model=StoredFileListResponse,
    summary="List the caller's stored files",
)
async def list_images(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    sort: str = Query(default="date_desc", description="date_desc, date_asc, name_asc or name_desc"),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> StoredFileListResponse:
    return await image_service.list_files(db, owner_id=user.id, page=page, limit=limit, sort=sort)


@router.post(
    "/batch-delete",
    response_model=BatchDeleteResponse,
    responses={
        400: {"description": "imageIds missing or empty", "model": ErrorResponse},
        401: {"description": "Not authenticated", "model": ErrorResponse},
        404: {"description": "None of the files exist", "model": ErrorResponse},
    },
    summary="Delete several of the caller's files",
)
async def batch_delete(
    body: BatchDeleteRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> BatchDeleteResponse:
    return await image_service.batch_delete(db, user, body.image_ids)


@router.get(
    "/{file_id}",
    response_model=StoredFileResponse,
    responses={
        401: {"description": "Not authenticated", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
    summary="Get one of the caller's stored file records",
)
async def get_image(
    file_id: uuid.UUID,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> StoredFileResponse:
    return await image_service.get_file(db, file_id, owner_id=user.id)


@router.put(
    "/{file_id}",
    response_model=StoredFileResponse,
    responses={
        401: {"description": "Not authenticated", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
    },
    summary="Rename or re-describe a stored file",
)
async def update_image(
    file_id: uuid.UUID,
    body: UpdateFileRequest,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> StoredFileResponse:
    return await image_service.update_file(
        db, user, file_id, name=body.name, description=body.description
    )


@router.delete(
    "/{file_id}",
    status_code=204,
    responses={
        401: {"description": "Not authenticated", "model": ErrorResponse},
        404: {"description": "File not found", "model": ErrorResponse},
        502: {"description": "Object storage failure; the record is kept", "model": ErrorResponse},
    },
    summary="Delete a stored file and its object",
)
async def delete_image(
    file_id: uuid.UUID,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await image_service.delete_file(db, user, file_id)
    return Response(status_code=204)
