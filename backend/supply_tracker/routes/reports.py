"""
Supply Tracker Backend: Report Routes
=======================================

Endpoints:
    GET /api/reports/dashboard?facilityId=&month=   one row per visible patient
    GET /api/reports/itemized?facilityId=&month=    one row per patient × supply
    GET /api/reports/overview?facilityId=&month=    totals over the dashboard

A store fault during aggregation still answers 200 with identity-only rows
(see services/reporter.py).
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import get_identity
from supply_tracker.schemas.common import ErrorResponse
from supply_tracker.schemas.report import DashboardRow, ItemizedRow, OverviewResponse
from supply_tracker.services.access_guard import Identity
from supply_tracker.services.reporter import reporter

router = APIRouter(prefix="/api/reports", tags=["Reports"])

REPORT_ERRORS = {
    403: {"description": "Facility filter outside the caller's scope", "model": ErrorResponse},
}


@router.get("/dashboard", response_model=List[DashboardRow], responses=REPORT_ERRORS)
async def dashboard(
    facility_id: Optional[int] = Query(default=None, alias="facilityId"),
    month: Optional[str] = Query(default=None, description="YYYY-MM"),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[DashboardRow]:
    return await reporter.dashboard_summary(db, identity, facility_id, month)


@router.get("/itemized", response_model=List[ItemizedRow], responses=REPORT_ERRORS)
async def itemized(
    facility_id: Optional[int] = Query(default=None, alias="facilityId"),
    month: Optional[str] = Query(default=None, description="YYYY-MM"),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[ItemizedRow]:
    return await reporter.itemized_summary(db, identity, facility_id, month)


@router.get("/overview", response_model=OverviewResponse, responses=REPORT_ERRORS)
async def overview(
    facility_id: Optional[int] = Query(default=None, alias="facilityId"),
    month: Optional[str] = Query(default=None, description="YYYY-MM"),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> OverviewResponse:
    return await reporter.overview(db, identity, facility_id, month)
