"""Schemas for registration, login, token verification and user admin."""

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from supply_tracker.models.user import ROLE_ADMIN, ROLE_USER
from supply_tracker.schemas.common import ApiModel


class RegisterRequest(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)
    facility_id: Optional[int] = Field(default=None, description="Requested home facility")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class LoginRequest(ApiModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class ChangePasswordRequest(ApiModel):
    current_password: str
    new_password: str


class UserResponse(ApiModel):
    """A user as exposed by the API; the password hash is never included."""
    id: int
    name: str
    email: str
    role: str
    facility_id: Optional[int] = None
    facility_name: Optional[str] = None
    is_approved: bool
    created_at: Optional[datetime] = None


class TokenResponse(ApiModel):
    token: str = Field(description="Bearer token for the Authorization header")
    user: UserResponse


class RegisterResponse(ApiModel):
    message: str
    user: UserResponse


class UserUpdateRequest(ApiModel):
    """Admin edit of a user's role and home facility."""
    role: Optional[str] = None
    facility_id: Optional[int] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in {ROLE_ADMIN, ROLE_USER}:
            raise ValueError(f"role must be '{ROLE_ADMIN}' or '{ROLE_USER}'")
        return v
