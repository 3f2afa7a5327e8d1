"""
Supply Tracker Backend: Usage Ledger Routes
=============================================

Endpoints:
    POST /api/usage                → upsert one (patient, supply, day) cell
    GET  /api/usage/{patient_id}   → every record of the patient

Status codes:
    200  recorded / listed
    400  missing field, day outside 1..31, negative quantity
    403  patient outside the caller's facility
    404  patient (or supply) absent
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import get_identity
from supply_tracker.schemas.common import ErrorResponse
from supply_tracker.schemas.usage import (
    RecordUsageRequest,
    RecordUsageResponse,
    UsageRecordResponse,
)
from supply_tracker.services.access_guard import Identity
from supply_tracker.services.usage_ledger import usage_ledger

router = APIRouter(prefix="/api/usage", tags=["Usage"])

LEDGER_ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    403: {"description": "Patient outside the caller's facility", "model": ErrorResponse},
    404: {"description": "Patient or supply not found", "model": ErrorResponse},
}


@router.post("", response_model=RecordUsageResponse, responses=LEDGER_ERRORS)
async def record_usage(
    body: RecordUsageRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> RecordUsageResponse:
    record = await usage_ledger.record_usage(
        db,
        identity,
        patient_id=body.patient_id,
        supply_id=body.supply_id,
        day_of_month=body.day_of_month,
        quantity=body.quantity,
        wound_diagnosis=body.wound_diagnosis,
    )
    return RecordUsageResponse(record=record)


@router.get("/{patient_id}", response_model=List[UsageRecordResponse], responses=LEDGER_ERRORS)
async def list_usage(
    patient_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[UsageRecordResponse]:
    return await usage_ledger.list_usage(db, identity, patient_id)
