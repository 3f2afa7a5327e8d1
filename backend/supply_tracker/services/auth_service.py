"""
Supply Tracker Backend: Authentication & User Service
=======================================================

What:  Registration, login, password changes, user approval and the startup
       bootstrap admin.
How:   bcrypt hashing through passlib's CryptContext; tokens from the access
       guard. New registrations are unapproved 'user' accounts; an admin
       approves them and assigns the home facility.
Who:   Called by routes/auth.py and routes/users.py; `ensure_bootstrap_admin`
       runs in the application lifespan.
"""

import logging
from typing import List, Optional, Tuple

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.config import settings
from supply_tracker.exceptions import (
    InvalidCredentialError,
    NotFoundError,
    ValidationError,
)
from supply_tracker.models.facility import Facility
from supply_tracker.models.user import ROLE_ADMIN, ROLE_USER, User
from supply_tracker.schemas.auth import UserResponse
from supply_tracker.services.access_guard import issue_token

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.bcrypt_rounds,
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # malformed stored hash
        return False


def _check_password_strength(password: str, field: str = "password") -> None:
    if len(password) < settings.min_password_length:
        raise ValidationError(
            message=f"Password must be at least {settings.min_password_length} characters long",
            field=field,
        )


class AuthService:
    """
    Account lifecycle.

    Error Handling Strategy:
        Unknown email and wrong password produce the same InvalidCredentialError
        so login does not reveal which emails exist. Pending approval is
        reported separately with its own message.
    """

    async def _to_response(self, db: AsyncSession, user: User) -> UserResponse:
        facility_name = None
        if user.facility_id is not None:
            result = await db.execute(select(Facility.name).where(Facility.id == user.facility_id))
            facility_name = result.scalar_one_or_none()
        response = UserResponse.model_validate(user)
        response.facility_name = facility_name
        return response

    async def register(
        self,
        db: AsyncSession,
        name: str,
        email: str,
        password: str,
        facility_id: Optional[int] = None,
    ) -> UserResponse:
        """
        Creates an unapproved user account.

        Raises:
            ValidationError: short password, duplicate email, unknown facility
        """
        _check_password_strength(password)

        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(message="User already exists with this email", field="email")

        if facility_id is not None:
            facility = await db.get(Facility, facility_id)
            if facility is None:
                raise ValidationError(message="Unknown facility", field="facilityId")

        user = User(
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            role=ROLE_USER,
            facility_id=facility_id,
            is_approved=False,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            # concurrent registration with the same email
            raise ValidationError(message="User already exists with this email", field="email")

        logger.info("User registered: %s (pending approval)", user.id)
        return await self._to_response(db, user)

    async def login(self, db: AsyncSession, email: str, password: str) -> Tuple[str, UserResponse]:
        """
        Verifies credentials and issues a token.

        Raises:
            InvalidCredentialError: unknown email, wrong password, unapproved account
        """
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            raise InvalidCredentialError()

        if not user.is_approved:
            raise InvalidCredentialError(message="Account pending approval")

        if not verify_password(password, user.password_hash):
            raise InvalidCredentialError()

        token = issue_token(user)
        logger.info("User %s logged in", user.id)
        return token, await self._to_response(db, user)

    async def get_user(self, db: AsyncSession, user_id: int) -> UserResponse:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=user_id)
        return await self._to_response(db, user)

    async def change_password(
        self,
        db: AsyncSession,
        user_id: int,
        current_password: str,
        new_password: str,
    ) -> None:
        """
        Raises:
            ValidationError: current password wrong, or new password too short
        """
        _check_password_strength(new_password, field="newPassword")

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=user_id)

        if not verify_password(current_password, user.password_hash):
            raise ValidationError(message="Current password is incorrect", field="currentPassword")

        user.password_hash = hash_password(new_password)
        await db.flush()
        logger.info("Password changed for user %s", user_id)

    # ── Administration ────────────────────────────────────────────────────

    async def list_users(self, db: AsyncSession) -> List[UserResponse]:
        result = await db.execute(
            select(User, Facility.name)
            .outerjoin(Facility, User.facility_id == Facility.id)
            .order_by(User.name)
        )
        users = []
        for user, facility_name in result.all():
            response = UserResponse.model_validate(user)
            response.facility_name = facility_name
            users.append(response)
        return users

    async def approve_user(self, db: AsyncSession, user_id: int) -> UserResponse:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=user_id)
        user.is_approved = True
        await db.flush()
        logger.info("User %s approved", user_id)
        return await self._to_response(db, user)

    async def update_user(
        self,
        db: AsyncSession,
        user_id: int,
        role: Optional[str] = None,
        facility_id: Optional[int] = None,
    ) -> UserResponse:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=user_id)

        if facility_id is not None:
            if await db.get(Facility, facility_id) is None:
                raise ValidationError(message="Unknown facility", field="facilityId")
            user.facility_id = facility_id
        if role is not None:
            user.role = role

        await db.flush()
        logger.info("User %s updated (role=%s, facility=%s)", user_id, user.role, user.facility_id)
        return await self._to_response(db, user)

    async def ensure_bootstrap_admin(self, db: AsyncSession) -> bool:
        """
        Creates the configured bootstrap admin if that email is unknown.

        Returns True when an account was created.
        """
        email = settings.bootstrap_admin_email
        password = settings.bootstrap_admin_password
        if not email or not password:
            return False

        email = email.strip().lower()
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            return False

        db.add(
            User(
                name=settings.bootstrap_admin_name,
                email=email,
                password_hash=hash_password(password),
                role=ROLE_ADMIN,
                is_approved=True,
            )
        )
        await db.flush()
        logger.info("Bootstrap admin created: %s", email)
        return True


auth_service = AuthService()
