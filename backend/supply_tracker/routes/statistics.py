"""Admin statistics endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import require_admin
from supply_tracker.schemas.report import StatisticsResponse
from supply_tracker.services.statistics_service import statistics_service

router = APIRouter(prefix="/api", tags=["Statistics"])


@router.get(
    "/statistics",
    response_model=StatisticsResponse,
    dependencies=[Depends(require_admin)],
    summary="User, facility, patient and supply counts",
)
async def statistics(db: AsyncSession = Depends(get_db_session)) -> StatisticsResponse:
    return await statistics_service.collect(db)
