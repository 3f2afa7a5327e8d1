"""
Supply Tracker Backend: Supply Catalog Service
================================================

What:  Catalog listing and admin maintenance: create, update, delete (per the
       configured policy), spreadsheet import, template download and the
       numeric code-range retirement.
How:   Plain ORM reads/writes on one request session. Range retirement and
       every imported row run inside a SAVEPOINT (`begin_nested`), so a
       failure undoes exactly that unit of work.
Who:   Called by routes/supplies.py; all mutations are admin-only.

Delete Policy (settings.supply_delete_policy), when usage references a supply:
    ┌────────────┬──────────────────────────────────────────────────┐
    │ deactivate │ is_active = false; history and reports unchanged │
    │ block      │ DependencyBlockedError with the usage count      │
    │ cascade    │ usage rows deleted, then the supply              │
    └────────────┴──────────────────────────────────────────────────┘
    Unreferenced supplies are always deleted outright.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.config import settings
from supply_tracker.exceptions import (
    DatabaseError,
    DependencyBlockedError,
    NotFoundError,
    ValidationError,
)
from supply_tracker.models._columns import utcnow
from supply_tracker.models.patient import Patient
from supply_tracker.models.supply import Supply
from supply_tracker.models.usage import UsageRecord
from supply_tracker.schemas.supply import (
    ImportResponse,
    RetireRangeResponse,
    SupplyDeleteResponse,
    SupplyResponse,
)
from supply_tracker.services.spreadsheet import build_workbook, cell_text, read_rows

logger = logging.getLogger(__name__)

TEMPLATE_HEADERS = ["AR Code", "Item Description", "HCPCS Code", "Unit Cost"]
TEMPLATE_SAMPLES = [
    ["WC999", "Sample Foam Dressing 4x4", "A6209", 5.50],
    ["WC998", "Sample Hydrocolloid 6x6", "A6234", 8.75],
]


def _parse_unit_cost(value) -> Decimal:
    if value is None or str(value).strip() == "":
        return Decimal("0.00")
    try:
        cost = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid unit cost '{value}'")
    if cost < 0:
        raise ValueError("Unit cost must not be negative")
    return cost.quantize(Decimal("0.01"))


class SupplyService:

    async def list_active(self, db: AsyncSession) -> List[SupplyResponse]:
        result = await db.execute(
            select(Supply).where(Supply.is_active.is_(True)).order_by(Supply.code)
        )
        return [SupplyResponse.model_validate(s) for s in result.scalars().all()]

    async def _ensure_code_free(self, db: AsyncSession, code: str, exclude_id: Optional[int] = None) -> None:
        query = select(Supply.id).where(Supply.code == code)
        if exclude_id is not None:
            query = query.where(Supply.id != exclude_id)
        existing = await db.execute(query)
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(message="Supply with this code already exists", field="code")

    async def create_supply(
        self,
        db: AsyncSession,
        code: str,
        description: str,
        hcpcs: Optional[str] = None,
        unit_cost: Decimal = Decimal("0.00"),
    ) -> SupplyResponse:
        """Admin-added supplies are always marked custom."""
        code = code.strip()
        await self._ensure_code_free(db, code)

        supply = Supply(
            code=code,
            description=description.strip(),
            hcpcs=(hcpcs or "").strip() or None,
            unit_cost=unit_cost,
            is_custom=True,
            is_active=True,
        )
        db.add(supply)
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationError(message="Supply with this code already exists", field="code")

        logger.info("Supply created: %s (%s)", supply.id, code)
        return SupplyResponse.model_validate(supply)

    async def update_supply(
        self,
        db: AsyncSession,
        supply_id: int,
        code: str,
        description: str,
        hcpcs: Optional[str] = None,
        unit_cost: Decimal = Decimal("0.00"),
    ) -> SupplyResponse:
        supply = await db.get(Supply, supply_id)
        if supply is None:
            raise NotFoundError(resource="supply", resource_id=supply_id)

        code = code.strip()
        await self._ensure_code_free(db, code, exclude_id=supply_id)

        supply.code = code
        supply.description = description.strip()
        supply.hcpcs = (hcpcs or "").strip() or None
        supply.unit_cost = unit_cost
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationError(message="Supply with this code already exists", field="code")

        logger.info("Supply %s updated", supply_id)
        return SupplyResponse.model_validate(supply)

    async def delete_supply(self, db: AsyncSession, supply_id: int) -> SupplyDeleteResponse:
        """
        Deletes a supply, or applies the delete policy when usage references it.

        Raises:
            NotFoundError: no such supply
            DependencyBlockedError: referenced and the policy is `block`
        """
        supply = await db.get(Supply, supply_id)
        if supply is None:
            raise NotFoundError(resource="supply", resource_id=supply_id)

        result = await db.execute(
            select(func.count(UsageRecord.id)).where(UsageRecord.supply_id == supply_id)
        )
        usage_count = result.scalar() or 0

        if usage_count == 0:
            await db.delete(supply)
            await db.flush()
            logger.info("Supply %s deleted", supply_id)
            return SupplyDeleteResponse(message="Supply deleted successfully", action="deleted")

        policy = settings.supply_delete_policy
        if policy == "block":
            raise DependencyBlockedError(
                resource="supply",
                dependent="usage records",
                blocking_count=usage_count,
                context={"supply_id": supply_id},
            )

        if policy == "cascade":
            removed = await db.execute(delete(UsageRecord).where(UsageRecord.supply_id == supply_id))
            await db.delete(supply)
            await db.flush()
            logger.info("Supply %s deleted with %d usage record(s)", supply_id, removed.rowcount)
            return SupplyDeleteResponse(
                message="Supply and its usage records deleted",
                action="cascaded",
                removed_usage=removed.rowcount or 0,
            )

        supply.is_active = False
        await db.flush()
        logger.info("Supply %s deactivated (%d usage record(s))", supply_id, usage_count)
        return SupplyDeleteResponse(
            message="Supply marked as inactive (has tracking data)",
            action="deactivated",
        )

    # ── Spreadsheets ──────────────────────────────────────────────────────

    def template(self) -> bytes:
        return build_workbook("Supplies", TEMPLATE_HEADERS, TEMPLATE_SAMPLES)

    async def import_xlsx(self, db: AsyncSession, raw: bytes) -> ImportResponse:
        """
        Upserts catalog rows by code.

        Each row is written in its own savepoint; a bad row is reported with
        its spreadsheet row number and the rest still import.
        """
        rows = read_rows(raw)
        success: List[str] = []
        errors: List[str] = []

        for row_number, record in rows:
            code = cell_text(record, "ar_code", "code")
            description = cell_text(record, "item_description", "description")
            hcpcs = cell_text(record, "hcpcs_code", "hcpcs")

            if not code or not description:
                errors.append(f"Row {row_number}: Missing required fields (AR Code, Item Description)")
                continue

            try:
                unit_cost = _parse_unit_cost(record.get("unit_cost"))
            except ValueError as e:
                errors.append(f"Row {row_number}: {e}")
                continue

            try:
                async with db.begin_nested():
                    result = await db.execute(select(Supply).where(Supply.code == code))
                    supply = result.scalar_one_or_none()
                    if supply is None:
                        db.add(
                            Supply(
                                code=code,
                                description=description,
                                hcpcs=hcpcs,
                                unit_cost=unit_cost,
                                is_custom=True,
                                is_active=True,
                            )
                        )
                    else:
                        supply.description = description
                        supply.hcpcs = hcpcs
                        supply.unit_cost = unit_cost
                        supply.is_active = True
            except SQLAlchemyError as e:
                logger.warning("Supply import row %d failed: %s", row_number, type(e).__name__)
                errors.append(f"Row {row_number}: could not be saved")
                continue

            success.append(f"{code} - {description} processed successfully")

        logger.info("Supply import: %d ok, %d errors", len(success), len(errors))
        return ImportResponse(
            message=f"Import completed: {len(success)} successful, {len(errors)} errors",
            success=success,
            errors=errors,
        )

    # ── Range Retirement ──────────────────────────────────────────────────

    async def retire_code_range(self, db: AsyncSession, first_code: int, last_code: int) -> RetireRangeResponse:
        """
        Removes every supply whose ASCII all-digit code lies in [first_code, last_code].

        All-or-nothing, in one savepoint:
            1. find the supplies in range
            2. delete the usage records that reference them
            3. delete the supplies
            4. touch updated_at on the patients whose usage was removed

        Nothing in range → zero counts, nothing written.

        Raises:
            DatabaseError: any step failed; nothing was removed
        """
        result = await db.execute(select(Supply.id, Supply.code))
        in_range = [
            (supply_id, code)
            for supply_id, code in result.all()
            if code.isascii() and code.isdigit() and first_code <= int(code) <= last_code
        ]
        if not in_range:
            logger.info("Retire range %d-%d: no supplies in range", first_code, last_code)
            return RetireRangeResponse(codes=[], removed_supplies=0, removed_usage=0, touched_patients=0)

        in_range.sort(key=lambda pair: int(pair[1]))
        supply_ids = [supply_id for supply_id, _ in in_range]

        try:
            async with db.begin_nested():
                patients = await db.execute(
                    select(UsageRecord.patient_id)
                    .where(UsageRecord.supply_id.in_(supply_ids))
                    .distinct()
                )
                patient_ids = [row[0] for row in patients.all()]

                removed_usage = await db.execute(
                    delete(UsageRecord).where(UsageRecord.supply_id.in_(supply_ids))
                )
                removed_supplies = await db.execute(
                    delete(Supply).where(Supply.id.in_(supply_ids))
                )
                if patient_ids:
                    await db.execute(
                        update(Patient)
                        .where(Patient.id.in_(patient_ids))
                        .values(updated_at=utcnow())
                    )
        except SQLAlchemyError as e:
            logger.error(
                "Retire range %d-%d failed, rolled back: %s",
                first_code, last_code, str(e), exc_info=True,
            )
            raise DatabaseError(
                message="Could not retire supplies. Nothing was changed.",
                context={"detail": str(e)},
            )

        # bulk deletes bypass the identity map
        db.expire_all()

        response = RetireRangeResponse(
            codes=[code for _, code in in_range],
            removed_supplies=removed_supplies.rowcount or 0,
            removed_usage=removed_usage.rowcount or 0,
            touched_patients=len(patient_ids),
        )
        logger.info(
            "Retired supplies %d-%d: %d supplies, %d usage records, %d patients touched",
            first_code, last_code,
            response.removed_supplies, response.removed_usage, response.touched_patients,
        )
        return response


supply_service = SupplyService()
