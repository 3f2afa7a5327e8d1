"""
Supply Tracker Backend: Usage Ledger
======================================

What:  Records and lists day-of-month supply usage per patient (the
       `tracking` table). This is the write path every grid cell edit goes
       through.
How:   One conflict-resolving statement per write:

           INSERT INTO tracking (...) VALUES (...)
           ON CONFLICT (patient_id, supply_id, day_of_month) DO UPDATE
               SET quantity   = excluded.quantity,
                   wound_dx   = COALESCE(excluded.wound_dx, tracking.wound_dx),
                   updated_at = excluded.updated_at

       The statement runs in a SAVEPOINT. If the store still reports a
       uniqueness violation the attempt raises ConflictRetry and tenacity
       runs the write again as UPDATE-then-INSERT, up to
       settings.upsert_max_attempts times.
Who:   Called by routes/usage.py.

Write Rules:
    - day_of_month in [1, 31] and quantity >= 0, checked before any read
    - patient must exist (NotFound) and be in the caller's scope (Forbidden)
    - supply must exist (NotFound)
    - quantity is always overwritten; an empty or absent diagnosis keeps the
      stored one
    - quantity 0 is stored, not deleted, so the diagnosis survives
"""

import logging
from typing import List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from supply_tracker.config import settings
from supply_tracker.exceptions import (
    ConflictRetry,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from supply_tracker.models._columns import utcnow
from supply_tracker.models.supply import Supply
from supply_tracker.models.usage import MAX_DAY_OF_MONTH, MIN_DAY_OF_MONTH, UsageRecord
from supply_tracker.schemas.usage import UsageRecordResponse
from supply_tracker.services.access_guard import Identity
from supply_tracker.services.patient_service import patient_service

logger = logging.getLogger(__name__)

USAGE_KEY = ["patient_id", "supply_id", "day_of_month"]

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _clean_diagnosis(wound_diagnosis: Optional[str]) -> Optional[str]:
    if wound_diagnosis is None:
        return None
    return wound_diagnosis.strip() or None


def _to_response(record: UsageRecord, supply: Supply) -> UsageRecordResponse:
    return UsageRecordResponse(
        id=record.id,
        patient_id=record.patient_id,
        supply_id=record.supply_id,
        day_of_month=record.day_of_month,
        quantity=record.quantity,
        wound_diagnosis=record.wound_dx,
        supply_code=supply.code,
        supply_description=supply.description,
        hcpcs=supply.hcpcs,
        unit_cost=supply.unit_cost,
        updated_at=record.updated_at,
    )


class UsageLedger:
    """
    Idempotent usage writes keyed on (patient, supply, day).

    Error Handling Strategy:
        Input and scope problems raise before any write. ConflictRetry stays
        inside this class. Any other store failure becomes DatabaseError
        (500) with the driver text in context["detail"].
    """

    def _validate(self, day_of_month: int, quantity: int) -> None:
        if not isinstance(day_of_month, int) or not (
            MIN_DAY_OF_MONTH <= day_of_month <= MAX_DAY_OF_MONTH
        ):
            raise ValidationError(
                message=f"dayOfMonth must be between {MIN_DAY_OF_MONTH} and {MAX_DAY_OF_MONTH}",
                field="dayOfMonth",
            )
        if not isinstance(quantity, int) or quantity < 0:
            raise ValidationError(message="quantity must be zero or greater", field="quantity")

    async def _upsert(self, db: AsyncSession, values: dict) -> int:
        """Single INSERT ... ON CONFLICT DO UPDATE; returns the record id."""
        dialect = db.get_bind().dialect.name
        insert_fn = _UPSERT_INSERTS.get(dialect)
        if insert_fn is None:
            return await self._update_then_insert(db, values)

        stmt = insert_fn(UsageRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=USAGE_KEY,
            set_={
                "quantity": stmt.excluded.quantity,
                "wound_dx": func.coalesce(stmt.excluded.wound_dx, UsageRecord.wound_dx),
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(UsageRecord.id)
        result = await db.execute(stmt)
        return result.scalar_one()

    async def _update_then_insert(self, db: AsyncSession, values: dict) -> int:
        """Retry path: the row most likely exists now, so update it first."""
        changes = {"quantity": values["quantity"], "updated_at": values["updated_at"]}
        if values["wound_dx"] is not None:
            changes["wound_dx"] = values["wound_dx"]

        key_filter = (
            (UsageRecord.patient_id == values["patient_id"])
            & (UsageRecord.supply_id == values["supply_id"])
            & (UsageRecord.day_of_month == values["day_of_month"])
        )
        result = await db.execute(
            update(UsageRecord)
            .where(key_filter)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.execute(insert(UsageRecord).values(**values))

        found = await db.execute(select(UsageRecord.id).where(key_filter))
        return found.scalar_one()

    async def _write_once(self, db: AsyncSession, values: dict, attempt_number: int) -> int:
        try:
            async with db.begin_nested():
                if attempt_number == 1:
                    return await self._upsert(db, values)
                return await self._update_then_insert(db, values)
        except IntegrityError as e:
            logger.info(
                "Usage key conflict (patient %s, supply %s, day %s), attempt %d",
                values["patient_id"], values["supply_id"], values["day_of_month"], attempt_number,
            )
            raise ConflictRetry(context={"detail": str(e.orig) if e.orig else str(e)})

    async def record_usage(
        self,
        db: AsyncSession,
        identity: Identity,
        patient_id: int,
        supply_id: int,
        day_of_month: int,
        quantity: int,
        wound_diagnosis: Optional[str] = None,
    ) -> UsageRecordResponse:
        """
        Upserts one (patient, supply, day) fact.

        Returns:
            The stored record joined with its supply

        Raises:
            ValidationError: day out of [1, 31] or negative quantity
            NotFoundError: patient or supply absent
            ForbiddenError: patient outside the caller's facility
            DatabaseError: store fault, or conflicts outlasted every attempt
        """
        self._validate(day_of_month, quantity)

        patient = await patient_service.get_patient(db, identity, patient_id)

        supply = await db.get(Supply, supply_id)
        if supply is None:
            raise NotFoundError(resource="supply", resource_id=supply_id)

        now = utcnow()
        values = {
            "patient_id": patient.id,
            "supply_id": supply.id,
            "day_of_month": day_of_month,
            "quantity": quantity,
            "wound_dx": _clean_diagnosis(wound_diagnosis),
            "created_at": now,
            "updated_at": now,
        }

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(ConflictRetry),
                stop=stop_after_attempt(settings.upsert_max_attempts),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    record_id = await self._write_once(
                        db, values, attempt.retry_state.attempt_number
                    )
        except ConflictRetry as e:
            logger.error(
                "Usage upsert gave up after %d attempts (patient %s, supply %s, day %s)",
                settings.upsert_max_attempts, patient_id, supply_id, day_of_month,
            )
            raise DatabaseError(
                message="Could not record usage. Please try again.",
                context={"detail": e.context.get("detail", e.message)},
            )
        except SQLAlchemyError as e:
            logger.error("Store fault recording usage: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not record usage. Please try again.",
                context={"detail": str(e)},
            )

        result = await db.execute(
            select(UsageRecord)
            .where(UsageRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one()

        logger.info(
            "Usage recorded: patient %s, supply %s, day %s, quantity %s",
            patient_id, supply_id, day_of_month, quantity,
        )
        return _to_response(record, supply)

    async def list_usage(
        self,
        db: AsyncSession,
        identity: Identity,
        patient_id: int,
    ) -> List[UsageRecordResponse]:
        """
        Every usage record of a patient, ordered by (supply_id, day_of_month).

        Raises:
            NotFoundError: patient absent
            ForbiddenError: patient outside the caller's facility
        """
        await patient_service.get_patient(db, identity, patient_id)

        result = await db.execute(
            select(UsageRecord, Supply)
            .join(Supply, UsageRecord.supply_id == Supply.id)
            .where(UsageRecord.patient_id == patient_id)
            .order_by(UsageRecord.supply_id, UsageRecord.day_of_month)
        )
        return [_to_response(record, supply) for record, supply in result.all()]


usage_ledger = UsageLedger()
