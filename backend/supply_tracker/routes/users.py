"""User administration (admin only): list, approve, change role/facility."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import require_admin
from supply_tracker.schemas.auth import UserResponse, UserUpdateRequest
from supply_tracker.services.auth_service import auth_service

router = APIRouter(
    prefix="/api/users",
    tags=["Users"],
    dependencies=[Depends(require_admin)],
)


@router.get("", response_model=List[UserResponse], summary="List all users")
async def list_users(db: AsyncSession = Depends(get_db_session)) -> List[UserResponse]:
    return await auth_service.list_users(db)


@router.post("/{user_id}/approve", response_model=UserResponse, summary="Approve a pending user")
async def approve_user(user_id: int, db: AsyncSession = Depends(get_db_session)) -> UserResponse:
    return await auth_service.approve_user(db, user_id)


@router.put("/{user_id}", response_model=UserResponse, summary="Update a user's role or home facility")
async def update_user(
    user_id: int,
    body: UserUpdateRequest,
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await auth_service.update_user(
        db, user_id, role=body.role, facility_id=body.facility_id
    )
