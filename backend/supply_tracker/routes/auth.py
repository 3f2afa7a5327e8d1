"""
Supply Tracker Backend: Authentication Routes
===============================================

Endpoints:
    POST /api/auth/register         → 201, unapproved account
    POST /api/auth/login            → {token, user}
    GET  /api/auth/verify           → current user
    POST /api/auth/change-password  → 200
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.routes.dependencies import get_identity
from supply_tracker.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UserResponse,
)
from supply_tracker.schemas.common import ErrorResponse, MessageResponse
from supply_tracker.services.access_guard import Identity
from supply_tracker.services.auth_service import auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    status_code=201,
    response_model=RegisterResponse,
    responses={400: {"description": "Invalid input or email taken", "model": ErrorResponse}},
    summary="Register a new (unapproved) user",
)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
) -> RegisterResponse:
    user = await auth_service.register(
        db,
        name=body.name,
        email=body.email,
        password=body.password,
        facility_id=body.facility_id,
    )
    return RegisterResponse(
        message="Registration successful. Please wait for admin approval.",
        user=user,
    )


@router.post(
    "/login",
    response_model=TokenResponse,
    responses={401: {"description": "Invalid credentials or pending approval", "model": ErrorResponse}},
    summary="Exchange email and password for a bearer token",
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    token, user = await auth_service.login(db, body.email, body.password)
    return TokenResponse(token=token, user=user)


@router.get(
    "/verify",
    response_model=UserResponse,
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
    summary="Return the user the presented token belongs to",
)
async def verify(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await auth_service.get_user(db, identity.user_id)


@router.post(
    "/change-password",
    response_model=MessageResponse,
    responses={400: {"description": "Wrong current password or weak new one", "model": ErrorResponse}},
    summary="Change the caller's password",
)
async def change_password(
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await auth_service.change_password(
        db,
        user_id=identity.user_id,
        current_password=body.current_password,
        new_password=body.new_password,
    )
    return MessageResponse(message="Password changed successfully")
