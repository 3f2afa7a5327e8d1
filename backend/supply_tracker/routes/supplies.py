"""
Supply Tracker Backend: Supply Catalog Routes
===============================================

Endpoints:
    GET    /api/supplies                 active catalog (any signed-in user)
    POST   /api/supplies                 admin; new items are custom
    PUT    /api/supplies/{id}            admin
    DELETE /api/supplies/{id}            admin; delete policy applies
    POST   /api/supplies/import          admin; .xlsx upsert by code
    GET    /api/supplies/template        admin; .xlsx template download
    POST   /api/supplies/retire-range    admin; all-or-nothing code range removal
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import get_identity, require_admin
from supply_tracker.schemas.common import ErrorResponse
from supply_tracker.schemas.supply import (
    ImportResponse,
    RetireRangeRequest,
    RetireRangeResponse,
    SupplyDeleteResponse,
    SupplyResponse,
    SupplyWrite,
)
from supply_tracker.services.spreadsheet import XLSX_MEDIA_TYPE
from supply_tracker.services.supply_service import supply_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/supplies", tags=["Supplies"])


@router.get(
    "",
    response_model=List[SupplyResponse],
    dependencies=[Depends(get_identity)],
    summary="Active supplies ordered by code",
)
async def list_supplies(db: AsyncSession = Depends(get_db_session)) -> List[SupplyResponse]:
    return await supply_service.list_active(db)


@router.post(
    "",
    status_code=201,
    response_model=SupplyResponse,
    dependencies=[Depends(require_admin)],
    responses={400: {"description": "Invalid input or duplicate code", "model": ErrorResponse}},
)
async def create_supply(
    body: SupplyWrite,
    db: AsyncSession = Depends(get_db_session),
) -> SupplyResponse:
    return await supply_service.create_supply(
        db,
        code=body.code,
        description=body.description,
        hcpcs=body.hcpcs,
        unit_cost=body.unit_cost,
    )


@router.put(
    "/{supply_id}",
    response_model=SupplyResponse,
    dependencies=[Depends(require_admin)],
    responses={
        400: {"description": "Invalid input or duplicate code", "model": ErrorResponse},
        404: {"description": "Supply not found", "model": ErrorResponse},
    },
)
async def update_supply(
    supply_id: int,
    body: SupplyWrite,
    db: AsyncSession = Depends(get_db_session),
) -> SupplyResponse:
    return await supply_service.update_supply(
        db,
        supply_id,
        code=body.code,
        description=body.description,
        hcpcs=body.hcpcs,
        unit_cost=body.unit_cost,
    )


@router.delete(
    "/{supply_id}",
    response_model=SupplyDeleteResponse,
    dependencies=[Depends(require_admin)],
    responses={
        404: {"description": "Supply not found", "model": ErrorResponse},
        409: {"description": "Usage references the supply (block policy)", "model": ErrorResponse},
    },
)
async def delete_supply(
    supply_id: int,
    db: AsyncSession = Depends(get_db_session),
) -> SupplyDeleteResponse:
    return await supply_service.delete_supply(db, supply_id)


@router.post(
    "/import",
    response_model=ImportResponse,
    dependencies=[Depends(require_admin)],
    summary="Import or update supplies from an .xlsx file",
)
async def import_supplies(
    file: UploadFile = File(..., description="Workbook with AR Code / Item Description / HCPCS Code / Unit Cost"),
    db: AsyncSession = Depends(get_db_session),
) -> ImportResponse:
    try:
        content = await file.read()
    finally:
        await file.close()

    logger.info("Supply import: filename=%s, size=%d bytes", file.filename or "unknown", len(content))
    return await supply_service.import_xlsx(db, content)


@router.get(
    "/template",
    dependencies=[Depends(require_admin)],
    response_class=Response,
    summary="Download the supply import template",
)
async def download_template() -> Response:
    return Response(
        content=supply_service.template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=supplies_template.xlsx"},
    )


@router.post(
    "/retire-range",
    response_model=RetireRangeResponse,
    dependencies=[Depends(require_admin)],
    responses={500: {"description": "Store fault; nothing was removed", "model": ErrorResponse}},
    summary="Remove every supply with a numeric code in the inclusive range",
)
async def retire_range(
    body: RetireRangeRequest,
    db: AsyncSession = Depends(get_db_session),
) -> RetireRangeResponse:
    return await supply_service.retire_code_range(db, body.first_code, body.last_code)
