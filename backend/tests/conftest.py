"""
Supply Tracker Backend: Test Configuration (conftest.py)
==========================================================

What:  Shared pytest fixtures for the whole suite.
How:   Every test gets a fresh in-memory SQLite store (aiosqlite, one shared
       connection), seeded with two facilities, three supplies and three
       users. Service tests use the `db` session; endpoint tests use
       `test_client`, an httpx AsyncClient over ASGITransport bound to an
       app built around the same store.

Fixture Hierarchy:
    store ─┬─ seed ─┬─ db           (service tests)
           │        └─ test_client  (endpoint tests)
           └─ identities / tokens derived from seed

    Only one session is open on the shared connection at a time: seeding
    commits and closes before `db` or `test_client` start.
"""

import os

# Settings are read at import time: configure before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("BOOTSTRAP_ADMIN_EMAIL", None)
os.environ.pop("BOOTSTRAP_ADMIN_PASSWORD", None)

from decimal import Decimal
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import Database
from supply_tracker.models import Facility, Patient, Supply, UsageRecord, User
from supply_tracker.services.access_guard import Identity, issue_token
from supply_tracker.services.auth_service import hash_password

TEST_PASSWORD = "secret-pass"


# ══════════════════════════════════════════════════════════════════════════
# Store
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def store() -> AsyncGenerator[Database, None]:
    """Fresh in-memory database with every table created."""
    database = Database("sqlite+aiosqlite://")
    await database.create_all()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def seed(store: Database) -> SimpleNamespace:
    """
    Reference data:
        facilities  f1 "North Clinic", f2 "South Hospital"
        supplies    a "600" @ 3.00 (A6209), b "601" @ 5.00 (A6234), c "WC100" @ 1.25
        users       admin (approved), nurse1 (f1, approved), nurse2 (f2, approved),
                    pending (f1, unapproved)
    """
    async with store.session_factory() as session:
        f1 = Facility(name="North Clinic")
        f2 = Facility(name="South Hospital")
        session.add_all([f1, f2])
        await session.flush()

        a = Supply(code="600", description="Foam Dressing 4x4", hcpcs="A6209", unit_cost=Decimal("3.00"))
        b = Supply(code="601", description="Hydrocolloid 6x6", hcpcs="A6234", unit_cost=Decimal("5.00"))
        c = Supply(code="WC100", description="Gauze Roll", hcpcs=None, unit_cost=Decimal("1.25"))
        session.add_all([a, b, c])

        password_hash = hash_password(TEST_PASSWORD)
        admin = User(name="Admin", email="admin@example.com", password_hash=password_hash,
                     role="admin", is_approved=True)
        nurse1 = User(name="Nurse One", email="nurse1@example.com", password_hash=password_hash,
                      role="user", facility_id=f1.id, is_approved=True)
        nurse2 = User(name="Nurse Two", email="nurse2@example.com", password_hash=password_hash,
                      role="user", facility_id=f2.id, is_approved=True)
        pending = User(name="Pending", email="pending@example.com", password_hash=password_hash,
                       role="user", facility_id=f1.id, is_approved=False)
        session.add_all([admin, nurse1, nurse2, pending])
        await session.commit()

        return SimpleNamespace(
            f1=f1.id, f2=f2.id,
            supply_a=a.id, supply_b=b.id, supply_c=c.id,
            admin=admin.id, nurse1=nurse1.id, nurse2=nurse2.id, pending=pending.id,
        )


@pytest_asyncio.fixture
async def db(store: Database, seed: SimpleNamespace) -> AsyncGenerator[AsyncSession, None]:
    """One session for a service test; never committed."""
    async with store.session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def add_patient(store: Database, seed):
    """
    Commits a patient through its own session and returns the id.
    Call it before opening `db` or sending requests.
    """

    async def _add(name: str, month: str, facility_id: int, mrn: str = None) -> int:
        async with store.session_factory() as session:
            patient = Patient(name=name, month=month, facility_id=facility_id, mrn=mrn)
            session.add(patient)
            await session.commit()
            return patient.id

    return _add


@pytest.fixture
def add_usage(store: Database, seed):
    """Commits usage records as (patient_id, supply_id, day, quantity, diagnosis) tuples."""

    async def _add(*rows) -> None:
        async with store.session_factory() as session:
            for patient_id, supply_id, day, quantity, diagnosis in rows:
                session.add(
                    UsageRecord(
                        patient_id=patient_id,
                        supply_id=supply_id,
                        day_of_month=day,
                        quantity=quantity,
                        wound_dx=diagnosis,
                    )
                )
            await session.commit()

    return _add


# ══════════════════════════════════════════════════════════════════════════
# Identities and tokens
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def admin_identity(seed) -> Identity:
    return Identity(user_id=seed.admin, role="admin", home_facility_id=None)


@pytest.fixture
def f1_identity(seed) -> Identity:
    return Identity(user_id=seed.nurse1, role="user", home_facility_id=seed.f1)


@pytest.fixture
def f2_identity(seed) -> Identity:
    return Identity(user_id=seed.nurse2, role="user", home_facility_id=seed.f2)


def bearer(user_id: int, role: str) -> dict:
    token = issue_token(SimpleNamespace(id=user_id, role=role))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(seed) -> dict:
    return bearer(seed.admin, "admin")


@pytest.fixture
def f1_headers(seed) -> dict:
    return bearer(seed.nurse1, "user")


# ══════════════════════════════════════════════════════════════════════════
# HTTP client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(store: Database, seed) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX AsyncClient talking to an app bound to the test store.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/api/health")
            assert response.status_code == 200
    """
    from supply_tracker.main import create_app

    app = create_app(store=store)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
