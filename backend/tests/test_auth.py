"""
Supply Tracker Backend: Authentication & Access Guard Tests
=============================================================

What we test:
    ✅ Registration creates unapproved users; duplicates and short passwords rejected
    ✅ Login: success, wrong password, pending approval
    ✅ Password change
    ✅ Token decoding: bad signature, expiry, garbage
    ✅ Identity resolution reloads the user (approval, unknown user)
    ✅ ScopePolicy decisions
    ✅ Bootstrap admin creation
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from jose import jwt
from sqlalchemy import select

from supply_tracker.config import settings
from supply_tracker.exceptions import (
    ForbiddenError,
    InvalidCredentialError,
    UnauthenticatedError,
    ValidationError,
)
from supply_tracker.models.user import User
from supply_tracker.services.access_guard import (
    Identity,
    decode_token,
    extract_bearer,
    issue_token,
    resolve_identity,
    scope_policy,
)
from supply_tracker.services.auth_service import AuthService, verify_password

# matches the password seeded in conftest.py
TEST_PASSWORD = "secret-pass"


class TestRegisterAndLogin:

    def setup_method(self):
        self.service = AuthService()

    @pytest.mark.asyncio
    async def test_register_creates_pending_user(self, db, seed):
        user = await self.service.register(db, "New Nurse", "new@example.com", "longenough", seed.f1)

        assert user.is_approved is False
        assert user.role == "user"
        assert user.facility_name == "North Clinic"

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, db, seed):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.register(db, "Again", "nurse1@example.com", "longenough")

        assert exc_info.value.message == "User already exists with this email"

    @pytest.mark.asyncio
    async def test_register_short_password(self, db, seed):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.register(db, "Short", "short@example.com", "abc")

        assert "at least" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_register_unknown_facility(self, db, seed):
        with pytest.raises(ValidationError):
            await self.service.register(db, "Lost", "lost@example.com", "longenough", 99999)

    @pytest.mark.asyncio
    async def test_login_returns_token_for_user(self, db, seed):
        token, user = await self.service.login(db, "nurse1@example.com", TEST_PASSWORD)

        assert user.id == seed.nurse1
        assert decode_token(token) == seed.nurse1

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, db, seed):
        with pytest.raises(InvalidCredentialError) as exc_info:
            await self.service.login(db, "nurse1@example.com", "wrong-password")

        assert exc_info.value.message == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_login_unknown_email(self, db, seed):
        with pytest.raises(InvalidCredentialError):
            await self.service.login(db, "nobody@example.com", TEST_PASSWORD)

    @pytest.mark.asyncio
    async def test_login_pending_approval(self, db, seed):
        with pytest.raises(InvalidCredentialError) as exc_info:
            await self.service.login(db, "pending@example.com", TEST_PASSWORD)

        assert exc_info.value.message == "Account pending approval"

    @pytest.mark.asyncio
    async def test_approved_user_can_log_in(self, db, seed):
        await self.service.approve_user(db, seed.pending)

        _, user = await self.service.login(db, "pending@example.com", TEST_PASSWORD)

        assert user.is_approved is True


class TestChangePassword:

    def setup_method(self):
        self.service = AuthService()

    @pytest.mark.asyncio
    async def test_change_password(self, db, seed):
        await self.service.change_password(db, seed.nurse1, TEST_PASSWORD, "brand-new-pass")

        user = await db.get(User, seed.nurse1)
        assert verify_password("brand-new-pass", user.password_hash)
        assert not verify_password(TEST_PASSWORD, user.password_hash)

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, db, seed):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.change_password(db, seed.nurse1, "not-it", "brand-new-pass")

        assert exc_info.value.message == "Current password is incorrect"


class TestUserAdministration:

    def setup_method(self):
        self.service = AuthService()

    @pytest.mark.asyncio
    async def test_list_users_includes_facility_names(self, db, seed):
        users = {u.email: u for u in await self.service.list_users(db)}

        assert users["nurse2@example.com"].facility_name == "South Hospital"
        assert users["admin@example.com"].facility_name is None

    @pytest.mark.asyncio
    async def test_update_role_and_facility(self, db, seed):
        updated = await self.service.update_user(db, seed.nurse1, role="admin", facility_id=seed.f2)

        assert updated.role == "admin"
        assert updated.facility_id == seed.f2

    @pytest.mark.asyncio
    async def test_bootstrap_admin_created_once(self, db, seed):
        with patch.object(settings, "bootstrap_admin_email", "Root@Example.com"), \
             patch.object(settings, "bootstrap_admin_password", "bootstrap-pass"):
            assert await self.service.ensure_bootstrap_admin(db) is True
            assert await self.service.ensure_bootstrap_admin(db) is False

        result = await db.execute(select(User).where(User.email == "root@example.com"))
        admin = result.scalar_one()
        assert admin.role == "admin"
        assert admin.is_approved is True

    @pytest.mark.asyncio
    async def test_bootstrap_admin_not_configured(self, db, seed):
        assert await self.service.ensure_bootstrap_admin(db) is False


class TestTokens:

    def test_extract_bearer(self):
        assert extract_bearer("Bearer abc.def") == "abc.def"
        assert extract_bearer("bearer abc.def") == "abc.def"
        assert extract_bearer("Basic abc") is None
        assert extract_bearer("") is None
        assert extract_bearer(None) is None

    def test_round_trip_subject(self):
        token = issue_token(SimpleNamespace(id=42, role="user"))

        assert decode_token(token) == 42

    def test_expired_token(self):
        issued = datetime.now(timezone.utc) - timedelta(minutes=settings.access_token_expire_minutes + 5)
        token = issue_token(SimpleNamespace(id=42, role="user"), now=issued)

        with pytest.raises(InvalidCredentialError) as exc_info:
            decode_token(token)

        assert exc_info.value.message == "Token has expired"

    def test_wrong_signature(self):
        token = jwt.encode({"sub": "42"}, "some-other-secret", algorithm="HS256")

        with pytest.raises(InvalidCredentialError):
            decode_token(token)

    def test_garbage_token(self):
        with pytest.raises(InvalidCredentialError):
            decode_token("not-a-jwt")

    def test_non_numeric_subject(self):
        token = jwt.encode({"sub": "abc"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)

        with pytest.raises(InvalidCredentialError):
            decode_token(token)


class TestResolveIdentity:

    @pytest.mark.asyncio
    async def test_missing_header(self, db, seed):
        with pytest.raises(UnauthenticatedError):
            await resolve_identity(db, None)

    @pytest.mark.asyncio
    async def test_resolves_home_facility(self, db, seed):
        token = issue_token(SimpleNamespace(id=seed.nurse1, role="user"))

        identity = await resolve_identity(db, f"Bearer {token}")

        assert identity == Identity(user_id=seed.nurse1, role="user", home_facility_id=seed.f1)

    @pytest.mark.asyncio
    async def test_unapproved_user_rejected(self, db, seed):
        token = issue_token(SimpleNamespace(id=seed.pending, role="user"))

        with pytest.raises(InvalidCredentialError):
            await resolve_identity(db, f"Bearer {token}")

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self, db, seed):
        token = issue_token(SimpleNamespace(id=99999, role="admin"))

        with pytest.raises(InvalidCredentialError):
            await resolve_identity(db, f"Bearer {token}")

    @pytest.mark.asyncio
    async def test_role_read_from_store_not_token(self, db, seed):
        """A token claiming admin for a plain user resolves to the stored role."""
        token = issue_token(SimpleNamespace(id=seed.nurse1, role="admin"))

        identity = await resolve_identity(db, f"Bearer {token}")

        assert identity.is_admin is False


class TestScopePolicy:

    def test_admin_acts_anywhere(self):
        admin = Identity(user_id=1, role="admin", home_facility_id=None)

        assert scope_policy.can_act_on(admin, 7)
        assert scope_policy.report_facility(admin, None) is None
        assert scope_policy.report_facility(admin, 7) == 7

    def test_user_limited_to_home(self):
        user = Identity(user_id=2, role="user", home_facility_id=3)

        assert scope_policy.can_act_on(user, 3)
        assert not scope_policy.can_act_on(user, 4)
        assert scope_policy.report_facility(user, None) == 3
        with pytest.raises(ForbiddenError):
            scope_policy.require_facility(user, 4)
        with pytest.raises(ForbiddenError):
            scope_policy.report_facility(user, 4)

    def test_user_without_home_acts_nowhere(self):
        user = Identity(user_id=2, role="user", home_facility_id=None)

        assert not scope_policy.can_act_on(user, 3)
        with pytest.raises(ForbiddenError):
            scope_policy.report_facility(user, None)

    def test_require_admin(self):
        with pytest.raises(ForbiddenError):
            scope_policy.require_admin(Identity(user_id=2, role="user", home_facility_id=3))
