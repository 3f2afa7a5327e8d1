"""
Supply Tracker Backend: Facility Directory Routes
===================================================

Endpoints:
    GET    /api/facilities/public   (no auth) id + name, for registration
    GET    /api/facilities          scoped list
    POST   /api/facilities          admin
    PUT    /api/facilities/{id}     admin rename
    DELETE /api/facilities/{id}     admin; 409 while patients reference it
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import get_identity, require_admin
from supply_tracker.schemas.common import ErrorResponse, MessageResponse
from supply_tracker.schemas.facility import FacilityPublic, FacilityResponse, FacilityWrite
from supply_tracker.services.access_guard import Identity
from supply_tracker.services.facility_service import facility_service

router = APIRouter(prefix="/api/facilities", tags=["Facilities"])


@router.get("/public", response_model=List[FacilityPublic], summary="Facility names for registration")
async def list_public(db: AsyncSession = Depends(get_db_session)) -> List[FacilityPublic]:
    return await facility_service.list_public(db)


@router.get("", response_model=List[FacilityResponse], summary="Facilities visible to the caller")
async def list_facilities(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[FacilityResponse]:
    return await facility_service.list_facilities(db, identity)


@router.post(
    "",
    status_code=201,
    response_model=FacilityResponse,
    dependencies=[Depends(require_admin)],
    responses={400: {"description": "Blank or duplicate name", "model": ErrorResponse}},
)
async def create_facility(
    body: FacilityWrite,
    db: AsyncSession = Depends(get_db_session),
) -> FacilityResponse:
    return await facility_service.create_facility(db, body.name)


@router.put(
    "/{facility_id}",
    response_model=FacilityResponse,
    dependencies=[Depends(require_admin)],
    responses={
        400: {"description": "Blank or duplicate name", "model": ErrorResponse},
        404: {"description": "Facility not found", "model": ErrorResponse},
    },
)
async def rename_facility(
    facility_id: int,
    body: FacilityWrite,
    db: AsyncSession = Depends(get_db_session),
) -> FacilityResponse:
    return await facility_service.rename_facility(db, facility_id, body.name)


@router.delete(
    "/{facility_id}",
    response_model=MessageResponse,
    dependencies=[Depends(require_admin)],
    responses={
        404: {"description": "Facility not found", "model": ErrorResponse},
        409: {"description": "Patients still reference the facility", "model": ErrorResponse},
    },
)
async def delete_facility(
    facility_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await facility_service.delete_facility(db, facility_id)
    return MessageResponse(message="Facility deleted successfully")
