"""
Supply Tracker Backend: Access Control Guard
==============================================

What:  Resolves a presented bearer credential to an `Identity` and owns the
       single facility-scoping policy every ledger, registry and reporter
       operation consults.
How:   Tokens are HS256 JWTs (python-jose). The user row is reloaded on each
       request so that approval, role and facility changes apply at once.
Who:   `resolve_identity` is called by the FastAPI dependency in
       routes/dependencies.py; `scope_policy` is called by the services.

Scoping Rule:
    ┌──────────────┬─────────────────────────────────────────────┐
    │ admin        │ may act on any facility                     │
    │ user         │ may act only on identity.home_facility_id   │
    │ user, no home│ may act on nothing                          │
    └──────────────┴─────────────────────────────────────────────┘

    A violation raises ForbiddenError. Nothing is filtered silently.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.config import settings
from supply_tracker.exceptions import (
    ForbiddenError,
    InvalidCredentialError,
    UnauthenticatedError,
)
from supply_tracker.models.user import ROLE_ADMIN, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of one request."""

    user_id: int
    role: str
    home_facility_id: Optional[int]

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=user.id, role=user.role, home_facility_id=user.facility_id)


class ScopePolicy:
    """
    The one answer to "can identity X act on facility Y".

    Services call `require_facility` before reading or writing facility-owned
    rows and `report_facility` to turn an optional report filter into the
    facility a report is allowed to cover.
    """

    def can_act_on(self, identity: Identity, facility_id: Optional[int]) -> bool:
        if identity.is_admin:
            return True
        if identity.home_facility_id is None or facility_id is None:
            return False
        return identity.home_facility_id == facility_id

    def require_facility(self, identity: Identity, facility_id: Optional[int]) -> None:
        if not self.can_act_on(identity, facility_id):
            logger.info(
                "Scope violation: user %s (home facility %s) on facility %s",
                identity.user_id,
                identity.home_facility_id,
                facility_id,
            )
            raise ForbiddenError(
                message="Access denied to this facility",
                context={"facility_id": facility_id},
            )

    def require_admin(self, identity: Identity) -> None:
        if not identity.is_admin:
            raise ForbiddenError(message="Admin access required")

    def report_facility(self, identity: Identity, facility_filter: Optional[int]) -> Optional[int]:
        """
        Facility a report may cover.

        Returns None for "all facilities" (admins without a filter). A
        non-admin asking for another facility gets ForbiddenError; a non-admin
        without a filter is pinned to its home facility.
        """
        if identity.is_admin:
            return facility_filter
        if facility_filter is None:
            if identity.home_facility_id is None:
                raise ForbiddenError(message="No facility assigned to this account")
            return identity.home_facility_id
        self.require_facility(identity, facility_filter)
        return facility_filter


scope_policy = ScopePolicy()


# ── Tokens ────────────────────────────────────────────────────────────────

def issue_token(user: User, now: Optional[datetime] = None) -> str:
    """Signs an access token for `user` valid for access_token_expire_minutes."""
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_expire_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Returns the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def decode_token(token: str) -> int:
    """Verifies the token and returns the user id it was issued for."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise InvalidCredentialError(message="Token has expired")
    except JWTError:
        raise InvalidCredentialError(message="Invalid token")

    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise InvalidCredentialError(message="Invalid token")


async def resolve_identity(db: AsyncSession, authorization: Optional[str]) -> Identity:
    """
    Credential → Identity.

    Raises:
        UnauthenticatedError: no bearer token presented
        InvalidCredentialError: bad/expired token, unknown or unapproved user
    """
    token = extract_bearer(authorization)
    if token is None:
        raise UnauthenticatedError()

    user_id = decode_token(token)
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise InvalidCredentialError(message="Invalid token")
    if not user.is_approved:
        raise InvalidCredentialError(message="Account pending approval")

    return Identity.from_user(user)
