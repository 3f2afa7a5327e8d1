"""
Supply Tracker Backend: Facility Directory Service
====================================================

What:  Listing, creating, renaming and deleting facilities.
Who:   Called by routes/facilities.py. Mutations are admin-only; the route
       layer enforces that before calling in.

Deletion Guard:
    A facility that any patient still references is never deleted. The
    caller gets DependencyBlockedError carrying the exact patient count, so
    it can tell the operator how many patients must move first.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.exceptions import (
    DependencyBlockedError,
    NotFoundError,
    ValidationError,
)
from supply_tracker.models.facility import Facility
from supply_tracker.models.patient import Patient
from supply_tracker.schemas.facility import FacilityPublic, FacilityResponse
from supply_tracker.services.access_guard import Identity

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(message="Facility name is required", field="name")
    return cleaned


class FacilityService:

    async def list_public(self, db: AsyncSession) -> List[FacilityPublic]:
        """id + name of every facility, for the registration form."""
        result = await db.execute(select(Facility).order_by(Facility.name))
        return [FacilityPublic.model_validate(f) for f in result.scalars().all()]

    async def list_facilities(self, db: AsyncSession, identity: Identity) -> List[FacilityResponse]:
        """Admins see every facility; other users only their home facility."""
        query = select(Facility).order_by(Facility.name)
        if not identity.is_admin:
            if identity.home_facility_id is None:
                return []
            query = query.where(Facility.id == identity.home_facility_id)
        result = await db.execute(query)
        return [FacilityResponse.model_validate(f) for f in result.scalars().all()]

    async def _ensure_name_free(self, db: AsyncSession, name: str, exclude_id: Optional[int] = None) -> None:
        query = select(Facility.id).where(Facility.name == name)
        if exclude_id is not None:
            query = query.where(Facility.id != exclude_id)
        existing = await db.execute(query)
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(message="Facility name already exists", field="name")

    async def create_facility(self, db: AsyncSession, name: str) -> FacilityResponse:
        name = _clean_name(name)
        await self._ensure_name_free(db, name)

        facility = Facility(name=name)
        db.add(facility)
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationError(message="Facility name already exists", field="name")

        logger.info("Facility created: %s (%s)", facility.id, name)
        return FacilityResponse.model_validate(facility)

    async def rename_facility(self, db: AsyncSession, facility_id: int, name: str) -> FacilityResponse:
        name = _clean_name(name)
        facility = await db.get(Facility, facility_id)
        if facility is None:
            raise NotFoundError(resource="facility", resource_id=facility_id)

        await self._ensure_name_free(db, name, exclude_id=facility_id)
        facility.name = name
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationError(message="Facility name already exists", field="name")

        logger.info("Facility %s renamed to %s", facility_id, name)
        return FacilityResponse.model_validate(facility)

    async def delete_facility(self, db: AsyncSession, facility_id: int) -> None:
        """
        Raises:
            NotFoundError: no such facility
            DependencyBlockedError: patients still reference it
        """
        facility = await db.get(Facility, facility_id)
        if facility is None:
            raise NotFoundError(resource="facility", resource_id=facility_id)

        result = await db.execute(
            select(func.count(Patient.id)).where(Patient.facility_id == facility_id)
        )
        patient_count = result.scalar() or 0
        if patient_count > 0:
            logger.info(
                "Facility %s delete blocked by %d patient(s)", facility_id, patient_count
            )
            raise DependencyBlockedError(
                resource="facility",
                dependent="patients",
                blocking_count=patient_count,
                context={"facility_id": facility_id},
            )

        await db.delete(facility)
        await db.flush()
        logger.info("Facility %s deleted", facility_id)


facility_service = FacilityService()
