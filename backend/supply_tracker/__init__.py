"""
Supply Tracker Backend: Application Package
=============================================

What:  Wound-care supply tracking API (facilities, patients, supply catalog,
       daily usage ledger, cost and diagnosis reports).
Who:   Imported by uvicorn (`supply_tracker.main:app`), Alembic and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (Guard, Ledger, Reporter) │  ← scoping, upserts, aggregation
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │     Database (store handle)         │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Every ledger, registry and reporter operation goes through the access
    guard's scoping policy before touching facility-owned data.
"""

__version__ = "1.0.0"
