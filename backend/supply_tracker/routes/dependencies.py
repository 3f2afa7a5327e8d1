"""
Supply Tracker Backend: Route Dependencies
============================================

What:  FastAPI dependencies that turn the Authorization header into an
       Identity, and the admin-only gate.
How:   Both share the request's database session (FastAPI caches
       `get_db_session` per request), so the identity lookup and the
       handler's work run in one transaction.
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.database import get_db_session
from supply_tracker.services.access_guard import Identity, resolve_identity, scope_policy


async def get_identity(
    authorization: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db_session),
) -> Identity:
    return await resolve_identity(db, authorization)


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    scope_policy.require_admin(identity)
    return identity
