"""
Supply Tracker Backend: Patient Registry Service
==================================================

What:  Facility-scoped CRUD over per-month patient records, plus the
       spreadsheet import.
How:   Every operation resolves the facility it touches and asks
       `scope_policy` before reading or writing. Deleting a patient removes
       its usage records first, then the patient row.
Who:   Called by routes/patients.py; `get_patient` is also used by the usage
       ledger.
"""

import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from supply_tracker.exceptions import NotFoundError, ValidationError
from supply_tracker.models.facility import Facility
from supply_tracker.models.patient import Patient
from supply_tracker.models.usage import UsageRecord
from supply_tracker.schemas.patient import MONTH_PATTERN, PatientResponse
from supply_tracker.schemas.supply import ImportResponse
from supply_tracker.services.access_guard import Identity, scope_policy
from supply_tracker.services.spreadsheet import cell_text, read_rows

logger = logging.getLogger(__name__)

DUPLICATE_PATIENT_MESSAGE = "Patient already exists for this month and facility"


def normalize_month(value: str) -> Optional[str]:
    """'YYYY-MM' as-is, 'MM-YYYY' converted; anything else is None."""
    value = (value or "").strip()
    if MONTH_PATTERN.match(value):
        return value
    parts = value.split("-")
    if len(parts) == 2 and len(parts[0]) in (1, 2) and len(parts[1]) == 4:
        candidate = f"{parts[1]}-{parts[0].zfill(2)}"
        if MONTH_PATTERN.match(candidate):
            return candidate
    return None


class PatientService:

    async def get_patient(self, db: AsyncSession, identity: Identity, patient_id: int) -> Patient:
        """
        Loads a patient the identity may act on.

        Raises:
            NotFoundError: no such patient
            ForbiddenError: patient belongs to another facility
        """
        patient = await db.get(Patient, patient_id)
        if patient is None:
            raise NotFoundError(resource="patient", resource_id=patient_id)
        scope_policy.require_facility(identity, patient.facility_id)
        return patient

    async def _to_response(self, db: AsyncSession, patient: Patient) -> PatientResponse:
        result = await db.execute(select(Facility.name).where(Facility.id == patient.facility_id))
        response = PatientResponse.model_validate(patient)
        response.facility_name = result.scalar_one_or_none()
        return response

    async def _require_facility_exists(self, db: AsyncSession, facility_id: int) -> None:
        if await db.get(Facility, facility_id) is None:
            raise ValidationError(message="Unknown facility", field="facilityId")

    async def _ensure_unique(
        self,
        db: AsyncSession,
        name: str,
        month: str,
        facility_id: int,
        exclude_id: Optional[int] = None,
    ) -> None:
        query = select(Patient.id).where(
            Patient.name == name,
            Patient.month == month,
            Patient.facility_id == facility_id,
        )
        if exclude_id is not None:
            query = query.where(Patient.id != exclude_id)
        existing = await db.execute(query)
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(message=DUPLICATE_PATIENT_MESSAGE)

    async def list_patients(
        self,
        db: AsyncSession,
        identity: Identity,
        facility_id: Optional[int] = None,
        month: Optional[str] = None,
    ) -> List[PatientResponse]:
        """
        Patients with facility names, ordered by name.

        A non-admin without a filter sees its home facility; asking for any
        other facility is Forbidden.
        """
        facility_id = scope_policy.report_facility(identity, facility_id)

        query = (
            select(Patient, Facility.name)
            .join(Facility, Patient.facility_id == Facility.id)
            .order_by(Patient.name, Patient.month)
        )
        if facility_id is not None:
            query = query.where(Patient.facility_id == facility_id)
        if month:
            query = query.where(Patient.month == month)

        result = await db.execute(query)
        patients = []
        for patient, facility_name in result.all():
            response = PatientResponse.model_validate(patient)
            response.facility_name = facility_name
            patients.append(response)
        return patients

    async def create_patient(
        self,
        db: AsyncSession,
        identity: Identity,
        name: str,
        month: str,
        facility_id: int,
        mrn: Optional[str] = None,
    ) -> PatientResponse:
        scope_policy.require_facility(identity, facility_id)
        await self._require_facility_exists(db, facility_id)
        await self._ensure_unique(db, name, month, facility_id)

        patient = Patient(
            name=name,
            month=month,
            mrn=(mrn or "").strip() or None,
            facility_id=facility_id,
        )
        db.add(patient)
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationError(message=DUPLICATE_PATIENT_MESSAGE)

        logger.info("Patient created: %s (facility %s, %s)", patient.id, facility_id, month)
        return await self._to_response(db, patient)

    async def update_patient(
        self,
        db: AsyncSession,
        identity: Identity,
        patient_id: int,
        name: str,
        month: str,
        facility_id: int,
        mrn: Optional[str] = None,
    ) -> PatientResponse:
        """Scope is checked against both the current and the new facility."""
        patient = await self.get_patient(db, identity, patient_id)
        scope_policy.require_facility(identity, facility_id)
        await self._require_facility_exists(db, facility_id)
        await self._ensure_unique(db, name, month, facility_id, exclude_id=patient_id)

        patient.name = name
        patient.month = month
        patient.mrn = (mrn or "").strip() or None
        patient.facility_id = facility_id
        try:
            await db.flush()
        except IntegrityError:
            raise ValidationError(message=DUPLICATE_PATIENT_MESSAGE)

        logger.info("Patient %s updated", patient_id)
        return await self._to_response(db, patient)

    async def delete_patient(self, db: AsyncSession, identity: Identity, patient_id: int) -> int:
        """Deletes the patient and its usage records; returns the usage count removed."""
        patient = await self.get_patient(db, identity, patient_id)

        removed = await db.execute(delete(UsageRecord).where(UsageRecord.patient_id == patient_id))
        await db.delete(patient)
        await db.flush()

        logger.info("Patient %s deleted with %d usage record(s)", patient_id, removed.rowcount or 0)
        return removed.rowcount or 0

    async def import_xlsx(self, db: AsyncSession, identity: Identity, raw: bytes) -> ImportResponse:
        """
        Creates patients from Name / Month / MRN / Facility rows.

        Facilities are matched by case-insensitive name. Rows the identity may
        not write, and rows that fail, are reported with their row number.
        """
        rows = read_rows(raw)

        result = await db.execute(select(Facility.id, Facility.name))
        facilities = {name.lower(): facility_id for facility_id, name in result.all()}

        success: List[str] = []
        errors: List[str] = []

        for row_number, record in rows:
            name = cell_text(record, "name")
            raw_month = cell_text(record, "month")
            mrn = cell_text(record, "mrn")
            facility_name = cell_text(record, "facility")

            if not name or not raw_month or not facility_name:
                errors.append(f"Row {row_number}: Missing required fields (Name, Month, Facility)")
                continue

            facility_id = facilities.get(facility_name.lower())
            if facility_id is None:
                errors.append(f'Row {row_number}: Facility "{facility_name}" not found')
                continue

            if not scope_policy.can_act_on(identity, facility_id):
                errors.append(f'Row {row_number}: Access denied to facility "{facility_name}"')
                continue

            month = normalize_month(raw_month)
            if month is None:
                errors.append(f"Row {row_number}: Month '{raw_month}' must be MM-YYYY or YYYY-MM")
                continue

            existing = await db.execute(
                select(func.count(Patient.id)).where(
                    Patient.name == name,
                    Patient.month == month,
                    Patient.facility_id == facility_id,
                )
            )
            if existing.scalar():
                errors.append(f"Row {row_number}: {DUPLICATE_PATIENT_MESSAGE}")
                continue

            try:
                async with db.begin_nested():
                    db.add(Patient(name=name, month=month, mrn=mrn, facility_id=facility_id))
            except SQLAlchemyError as e:
                logger.warning("Patient import row %d failed: %s", row_number, type(e).__name__)
                errors.append(f"Row {row_number}: could not be saved")
                continue

            success.append(f"{name} ({month}) added successfully")

        logger.info("Patient import: %d ok, %d errors", len(success), len(errors))
        return ImportResponse(
            message=f"Import completed: {len(success)} successful, {len(errors)} errors",
            success=success,
            errors=errors,
        )


patient_service = PatientService()
