"""Admin statistics: row counts across the deployment."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.models.facility import Facility
from supply_tracker.models.patient import Patient
from supply_tracker.models.supply import Supply
from supply_tracker.models.user import User
from supply_tracker.schemas.report import StatisticsResponse

logger = logging.getLogger(__name__)


class StatisticsService:

    async def _count(self, db: AsyncSession, query) -> int:
        result = await db.execute(query)
        return result.scalar() or 0

    async def collect(self, db: AsyncSession) -> StatisticsResponse:
        return StatisticsResponse(
            total_users=await self._count(db, select(func.count(User.id))),
            pending_users=await self._count(
                db, select(func.count(User.id)).where(User.is_approved.is_(False))
            ),
            total_facilities=await self._count(db, select(func.count(Facility.id))),
            total_patients=await self._count(db, select(func.count(Patient.id))),
            total_supplies=await self._count(
                db, select(func.count(Supply.id)).where(Supply.is_active.is_(True))
            ),
        )


statistics_service = StatisticsService()
