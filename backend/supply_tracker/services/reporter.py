"""
Supply Tracker Backend: Aggregation Reporter
==============================================

What:  Dashboard (one row per visible patient) and itemized (one row per
       patient × supply) usage reports, plus the overview totals.
How:   Aggregates are computed with SUM/COALESCE over LEFT JOINs so patients
       without usage still appear with zero totals. Distinct diagnosis, code
       and HCPCS lists are folded from a second, row-level query and joined
       in Python ("; " for diagnoses, ", " for codes), sorted for stable
       output on every backend.
Who:   Called by routes/reports.py.

AggregationRun State Machine:
    PRIMARY (full aggregation)
        → store fault (SQLAlchemyError) while aggregating: roll back to the
          savepoint, log WARNING, transition to DEGRADED
    DEGRADED (identity fields only)
        → plain patient query with zeroed/empty aggregate columns
        → a store fault here too is a real outage: DatabaseError (500)

    The degraded payload has the same shape as the primary one; only the
    log line tells them apart.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.exceptions import DatabaseError
from supply_tracker.models.facility import Facility
from supply_tracker.models.patient import Patient
from supply_tracker.models.supply import Supply
from supply_tracker.models.usage import UsageRecord
from supply_tracker.schemas.report import DashboardRow, ItemizedRow, OverviewResponse
from supply_tracker.services.access_guard import Identity, scope_policy

logger = logging.getLogger(__name__)

T = TypeVar("T")

CENT = Decimal("0.01")
DIAGNOSIS_SEPARATOR = "; "
CODE_SEPARATOR = ", "


def _money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        # SQLite hands back floats for NUMERIC arithmetic
        value = Decimal(str(value))
    return value.quantize(CENT)


def _joined(values: Set[str], separator: str) -> str:
    return separator.join(sorted(values))


# Billing columns only admins see
DASHBOARD_BILLING = {"total_cost": None, "supply_codes": None, "hcpcs_codes": None}
ITEMIZED_BILLING = {"supply_code": None, "hcpcs": None, "unit_cost": None, "line_cost": None}


def _redacted(rows: List[T], identity: Identity, billing: Dict[str, None]) -> List[T]:
    if identity.is_admin:
        return rows
    return [row.model_copy(update=billing) for row in rows]


class AggregationRun:
    """
    One report execution with a primary path and a degraded fallback.

    Attributes:
        state:  PRIMARY until a store fault forces DEGRADED
        fault:  Exception type name that caused the transition (None if none)
    """

    PRIMARY = "primary"
    DEGRADED = "degraded"

    def __init__(self, db: AsyncSession, report: str):
        self.db = db
        self.report = report
        self.state = self.PRIMARY
        self.fault: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.state == self.DEGRADED

    def _degrade(self, error: Exception) -> None:
        self.state = self.DEGRADED
        self.fault = type(error).__name__
        logger.warning(
            "Report '%s' degraded: aggregation failed with %s; serving identity fields only",
            self.report,
            self.fault,
        )

    async def execute(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            async with self.db.begin_nested():
                return await primary()
        except SQLAlchemyError as e:
            self._degrade(e)

        try:
            return await fallback()
        except SQLAlchemyError as e:
            logger.error(
                "Report '%s' fallback failed: %s", self.report, str(e), exc_info=True
            )
            raise DatabaseError(
                message="Could not build the report. Please try again.",
                context={"detail": str(e)},
            )


class Reporter:

    # ── Query pieces ──────────────────────────────────────────────────────

    @staticmethod
    def _visible(query, facility_id: Optional[int], month: Optional[str]):
        if facility_id is not None:
            query = query.where(Patient.facility_id == facility_id)
        if month:
            query = query.where(Patient.month == month)
        return query

    async def _usage_details(self, db: AsyncSession, facility_id: Optional[int], month: Optional[str]):
        query = (
            select(
                UsageRecord.patient_id,
                UsageRecord.supply_id,
                UsageRecord.quantity,
                UsageRecord.wound_dx,
                Supply.code,
                Supply.hcpcs,
            )
            .join(Supply, UsageRecord.supply_id == Supply.id)
            .join(Patient, UsageRecord.patient_id == Patient.id)
        )
        result = await db.execute(self._visible(query, facility_id, month))
        return result.all()

    async def _identity_rows(self, db: AsyncSession, facility_id: Optional[int], month: Optional[str]):
        query = (
            select(
                Patient.id,
                Patient.name,
                Patient.mrn,
                Patient.month,
                Patient.facility_id,
                Patient.updated_at,
                Facility.name.label("facility_name"),
            )
            .outerjoin(Facility, Patient.facility_id == Facility.id)
            .order_by(Patient.name, Patient.id)
        )
        result = await db.execute(self._visible(query, facility_id, month))
        return result.all()

    # ── Dashboard ─────────────────────────────────────────────────────────

    async def _dashboard_primary(
        self, db: AsyncSession, facility_id: Optional[int], month: Optional[str]
    ) -> List[DashboardRow]:
        query = (
            select(
                Patient.id,
                Patient.name,
                Patient.mrn,
                Patient.month,
                Patient.facility_id,
                Patient.updated_at,
                Facility.name.label("facility_name"),
                func.coalesce(func.sum(UsageRecord.quantity), 0).label("total_units"),
                func.coalesce(func.sum(UsageRecord.quantity * Supply.unit_cost), 0).label("total_cost"),
            )
            .outerjoin(Facility, Patient.facility_id == Facility.id)
            .outerjoin(UsageRecord, UsageRecord.patient_id == Patient.id)
            .outerjoin(Supply, UsageRecord.supply_id == Supply.id)
            .group_by(
                Patient.id,
                Patient.name,
                Patient.mrn,
                Patient.month,
                Patient.facility_id,
                Patient.updated_at,
                Facility.name,
            )
            .order_by(Patient.name, Patient.id)
        )
        result = await db.execute(self._visible(query, facility_id, month))
        totals = result.all()

        diagnoses: Dict[int, Set[str]] = defaultdict(set)
        codes: Dict[int, Set[str]] = defaultdict(set)
        hcpcs: Dict[int, Set[str]] = defaultdict(set)
        for detail in await self._usage_details(db, facility_id, month):
            if detail.wound_dx:
                diagnoses[detail.patient_id].add(detail.wound_dx)
            # zero-quantity cells keep their diagnosis but bill nothing
            if detail.quantity > 0:
                codes[detail.patient_id].add(detail.code)
                if detail.hcpcs:
                    hcpcs[detail.patient_id].add(detail.hcpcs)

        return [
            DashboardRow(
                patient_id=row.id,
                patient_name=row.name,
                mrn=row.mrn,
                month=row.month,
                facility_id=row.facility_id,
                facility_name=row.facility_name,
                updated_at=row.updated_at,
                total_units=int(row.total_units or 0),
                total_cost=_money(row.total_cost),
                wound_diagnoses=_joined(diagnoses[row.id], DIAGNOSIS_SEPARATOR),
                supply_codes=_joined(codes[row.id], CODE_SEPARATOR),
                hcpcs_codes=_joined(hcpcs[row.id], CODE_SEPARATOR),
            )
            for row in totals
        ]

    async def _dashboard_fallback(
        self, db: AsyncSession, facility_id: Optional[int], month: Optional[str]
    ) -> List[DashboardRow]:
        return [
            DashboardRow(
                patient_id=row.id,
                patient_name=row.name,
                mrn=row.mrn,
                month=row.month,
                facility_id=row.facility_id,
                facility_name=row.facility_name,
                updated_at=row.updated_at,
            )
            for row in await self._identity_rows(db, facility_id, month)
        ]

    async def dashboard_summary(
        self,
        db: AsyncSession,
        identity: Identity,
        facility_filter: Optional[int] = None,
        month: Optional[str] = None,
    ) -> List[DashboardRow]:
        """
        Per visible patient: total units, total cost, distinct diagnoses,
        supply codes and HCPCS codes. Patients without usage show zeros.
        Non-admins get the billing columns as None.

        Raises:
            ForbiddenError: non-admin asked for another facility
            DatabaseError: both the aggregation and the fallback failed
        """
        rows = await self._dashboard_rows(db, identity, facility_filter, month)
        return _redacted(rows, identity, DASHBOARD_BILLING)

    async def _dashboard_rows(
        self,
        db: AsyncSession,
        identity: Identity,
        facility_filter: Optional[int],
        month: Optional[str],
    ) -> List[DashboardRow]:
        facility_id = scope_policy.report_facility(identity, facility_filter)
        run = AggregationRun(db, "dashboard")
        return await run.execute(
            lambda: self._dashboard_primary(db, facility_id, month),
            lambda: self._dashboard_fallback(db, facility_id, month),
        )

    # ── Itemized ──────────────────────────────────────────────────────────

    async def _itemized_primary(
        self, db: AsyncSession, facility_id: Optional[int], month: Optional[str]
    ) -> List[ItemizedRow]:
        total_units = func.sum(UsageRecord.quantity)
        query = (
            select(
                Patient.id,
                Patient.name,
                Patient.mrn,
                Patient.month,
                Patient.facility_id,
                Facility.name.label("facility_name"),
                Supply.id.label("supply_id"),
                Supply.code,
                Supply.description,
                Supply.hcpcs,
                Supply.unit_cost,
                total_units.label("total_units"),
            )
            .select_from(UsageRecord)
            .join(Patient, UsageRecord.patient_id == Patient.id)
            .join(Supply, UsageRecord.supply_id == Supply.id)
            .outerjoin(Facility, Patient.facility_id == Facility.id)
            .group_by(
                Patient.id,
                Patient.name,
                Patient.mrn,
                Patient.month,
                Patient.facility_id,
                Facility.name,
                Supply.id,
                Supply.code,
                Supply.description,
                Supply.hcpcs,
                Supply.unit_cost,
            )
            .having(total_units > 0)
            .order_by(Patient.name, Patient.id, Supply.code)
        )
        result = await db.execute(self._visible(query, facility_id, month))
        groups = result.all()

        diagnoses: Dict[tuple, Set[str]] = defaultdict(set)
        for detail in await self._usage_details(db, facility_id, month):
            if detail.wound_dx:
                diagnoses[(detail.patient_id, detail.supply_id)].add(detail.wound_dx)

        rows = []
        for group in groups:
            unit_cost = _money(group.unit_cost)
            units = int(group.total_units)
            rows.append(
                ItemizedRow(
                    patient_id=group.id,
                    patient_name=group.name,
                    mrn=group.mrn,
                    month=group.month,
                    facility_id=group.facility_id,
                    facility_name=group.facility_name,
                    supply_id=group.supply_id,
                    supply_code=group.code,
                    supply_description=group.description,
                    hcpcs=group.hcpcs,
                    total_units=units,
                    unit_cost=unit_cost,
                    line_cost=(unit_cost * units).quantize(CENT),
                    wound_diagnoses=_joined(
                        diagnoses[(group.id, group.supply_id)], DIAGNOSIS_SEPARATOR
                    ),
                )
            )
        return rows

    async def _itemized_fallback(
        self, db: AsyncSession, facility_id: Optional[int], month: Optional[str]
    ) -> List[ItemizedRow]:
        # one placeholder row per patient, supply columns empty
        return [
            ItemizedRow(
                patient_id=row.id,
                patient_name=row.name,
                mrn=row.mrn,
                month=row.month,
                facility_id=row.facility_id,
                facility_name=row.facility_name,
            )
            for row in await self._identity_rows(db, facility_id, month)
        ]

    async def itemized_summary(
        self,
        db: AsyncSession,
        identity: Identity,
        facility_filter: Optional[int] = None,
        month: Optional[str] = None,
    ) -> List[ItemizedRow]:
        """One row per (patient, supply) with a nonzero summed quantity."""
        facility_id = scope_policy.report_facility(identity, facility_filter)
        run = AggregationRun(db, "itemized")
        rows = await run.execute(
            lambda: self._itemized_primary(db, facility_id, month),
            lambda: self._itemized_fallback(db, facility_id, month),
        )
        return _redacted(rows, identity, ITEMIZED_BILLING)

    # ── Overview ──────────────────────────────────────────────────────────

    async def overview(
        self,
        db: AsyncSession,
        identity: Identity,
        facility_filter: Optional[int] = None,
        month: Optional[str] = None,
    ) -> OverviewResponse:
        """Totals across the dashboard rows the caller can see, cost included."""
        rows = await self._dashboard_rows(db, identity, facility_filter, month)
        return OverviewResponse(
            total_patients=len(rows),
            total_facilities=len({row.facility_id for row in rows}),
            total_units=sum(row.total_units for row in rows),
            total_cost=sum((row.total_cost for row in rows), Decimal("0.00")),
        )


reporter = Reporter()
