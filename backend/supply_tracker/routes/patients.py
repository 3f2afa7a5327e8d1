"""
Supply Tracker Backend: Patient Registry Routes
=================================================

Endpoints:
    GET    /api/patients?facilityId=&month=   scoped list
    POST   /api/patients                      create (scope-checked)
    PUT    /api/patients/{id}                 update (old and new facility checked)
    DELETE /api/patients/{id}                 delete with its usage
    POST   /api/patients/import               .xlsx import
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import get_identity
from supply_tracker.schemas.common import ErrorResponse, MessageResponse
from supply_tracker.schemas.patient import PatientResponse, PatientWrite
from supply_tracker.schemas.supply import ImportResponse
from supply_tracker.services.access_guard import Identity
from supply_tracker.services.patient_service import patient_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patients", tags=["Patients"])

SCOPE_ERRORS = {
    403: {"description": "Patient or facility outside the caller's scope", "model": ErrorResponse},
    404: {"description": "Patient not found", "model": ErrorResponse},
}


@router.get("", response_model=List[PatientResponse], responses=SCOPE_ERRORS)
async def list_patients(
    facility_id: Optional[int] = Query(default=None, alias="facilityId"),
    month: Optional[str] = Query(default=None, description="YYYY-MM"),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[PatientResponse]:
    return await patient_service.list_patients(db, identity, facility_id=facility_id, month=month)


@router.post("", status_code=201, response_model=PatientResponse, responses=SCOPE_ERRORS)
async def create_patient(
    body: PatientWrite,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PatientResponse:
    return await patient_service.create_patient(
        db,
        identity,
        name=body.name,
        month=body.month,
        facility_id=body.facility_id,
        mrn=body.mrn,
    )


@router.put("/{patient_id}", response_model=PatientResponse, responses=SCOPE_ERRORS)
async def update_patient(
    patient_id: int,
    body: PatientWrite,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PatientResponse:
    return await patient_service.update_patient(
        db,
        identity,
        patient_id,
        name=body.name,
        month=body.month,
        facility_id=body.facility_id,
        mrn=body.mrn,
    )


@router.delete("/{patient_id}", response_model=MessageResponse, responses=SCOPE_ERRORS)
async def delete_patient(
    patient_id: int,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await patient_service.delete_patient(db, identity, patient_id)
    return MessageResponse(message="Patient deleted successfully")


@router.post("/import", response_model=ImportResponse, summary="Import patients from an .xlsx file")
async def import_patients(
    file: UploadFile = File(..., description="Workbook with Name / Month / MRN / Facility columns"),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ImportResponse:
    try:
        content = await file.read()
    finally:
        await file.close()

    logger.info("Patient import: filename=%s, size=%d bytes", file.filename or "unknown", len(content))
    return await patient_service.import_xlsx(db, identity, content)
