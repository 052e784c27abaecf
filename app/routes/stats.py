"""
MediaHost Backend — Statistics Routes
=======================================

    GET /api/stats/uploads   upload totals per file type
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import CurrentUser, require_user
from app.database import get_db_session
from app.schemas.upload import UploadStatsResponse
from app.services.stats_service import stats_service

router = APIRouter(prefix="/api/stats", tags=["Statistics"])


@router.get("/uploads", response_model=UploadStatsResponse, summary="Upload totals")
async def upload_stats(
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db_session),
) -> UploadStatsResponse:
    return await stats_service.upload_stats(db)
