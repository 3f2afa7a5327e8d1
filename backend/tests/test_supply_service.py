"""
Supply Tracker Backend: Supply Catalog Service Tests
======================================================

What we test:
    ✅ Delete policy: unreferenced delete, deactivate, block, cascade
    ✅ Code-range retirement counts and the nothing-in-range case
    ✅ Spreadsheet import (create, update by code, per-row errors)
    ✅ Template workbook headers
"""

from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

import pytest
from openpyxl import load_workbook
from sqlalchemy import func, select

from supply_tracker.config import settings
from supply_tracker.exceptions import DependencyBlockedError, NotFoundError, ValidationError
from supply_tracker.models.patient import Patient
from supply_tracker.models.supply import Supply
from supply_tracker.models.usage import UsageRecord
from supply_tracker.services.spreadsheet import build_workbook
from supply_tracker.services.supply_service import TEMPLATE_HEADERS, SupplyService


async def _usage_count(db, supply_id: int) -> int:
    result = await db.execute(
        select(func.count(UsageRecord.id)).where(UsageRecord.supply_id == supply_id)
    )
    return result.scalar()


class TestCreateSupply:

    def setup_method(self):
        self.service = SupplyService()

    @pytest.mark.asyncio
    async def test_created_as_custom(self, db, seed):
        supply = await self.service.create_supply(db, "WC200", "Alginate 2x2", "A6196", Decimal("4.10"))

        assert supply.is_custom is True
        assert supply.is_active is True
        assert supply.unit_cost == Decimal("4.10")

    @pytest.mark.asyncio
    async def test_duplicate_code_rejected(self, db, seed):
        with pytest.raises(ValidationError) as exc_info:
            await self.service.create_supply(db, "600", "Another Foam")

        assert exc_info.value.message == "Supply with this code already exists"

    @pytest.mark.asyncio
    async def test_list_active_hides_inactive(self, db, seed):
        supply = await db.get(Supply, seed.supply_c)
        supply.is_active = False
        await db.flush()

        codes = [s.code for s in await self.service.list_active(db)]

        assert codes == ["600", "601"]


class TestDeleteSupply:

    def setup_method(self):
        self.service = SupplyService()

    @pytest.mark.asyncio
    async def test_unreferenced_supply_deleted(self, db, seed):
        result = await self.service.delete_supply(db, seed.supply_c)

        assert result.action == "deleted"
        assert await db.get(Supply, seed.supply_c) is None

    @pytest.mark.asyncio
    async def test_referenced_supply_deactivated_by_default(self, add_patient, add_usage, db, seed):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage((patient_id, seed.supply_a, 1, 2, None))

        with patch.object(settings, "supply_delete_policy", "deactivate"):
            result = await self.service.delete_supply(db, seed.supply_a)

        assert result.action == "deactivated"
        supply = await db.get(Supply, seed.supply_a)
        assert supply.is_active is False
        assert await _usage_count(db, seed.supply_a) == 1

    @pytest.mark.asyncio
    async def test_block_policy_reports_usage_count(self, add_patient, add_usage, db, seed):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage(
            (patient_id, seed.supply_a, 1, 2, None),
            (patient_id, seed.supply_a, 2, 1, None),
        )

        with patch.object(settings, "supply_delete_policy", "block"):
            with pytest.raises(DependencyBlockedError) as exc_info:
                await self.service.delete_supply(db, seed.supply_a)

        assert exc_info.value.blocking_count == 2

    @pytest.mark.asyncio
    async def test_cascade_policy_removes_usage(self, add_patient, add_usage, db, seed):
        patient_id = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage(
            (patient_id, seed.supply_a, 1, 2, None),
            (patient_id, seed.supply_b, 1, 1, None),
        )

        with patch.object(settings, "supply_delete_policy", "cascade"):
            result = await self.service.delete_supply(db, seed.supply_a)

        assert result.action == "cascaded"
        assert result.removed_usage == 1
        assert await _usage_count(db, seed.supply_a) == 0
        assert await _usage_count(db, seed.supply_b) == 1

    @pytest.mark.asyncio
    async def test_missing_supply(self, db, seed):
        with pytest.raises(NotFoundError):
            await self.service.delete_supply(db, 99999)


class TestRetireCodeRange:

    def setup_method(self):
        self.service = SupplyService()

    @pytest.mark.asyncio
    async def test_removes_supplies_and_usage_in_range(self, add_patient, add_usage, db, seed):
        jane = await add_patient("Jane Doe", "2025-03", seed.f1)
        john = await add_patient("John Roe", "2025-03", seed.f2)
        idle = await add_patient("Idle Patient", "2025-03", seed.f1)
        await add_usage(
            (jane, seed.supply_a, 1, 2, None),
            (jane, seed.supply_b, 1, 1, None),
            (john, seed.supply_b, 4, 1, None),
            (idle, seed.supply_c, 4, 1, None),
        )

        result = await self.service.retire_code_range(db, 600, 601)

        assert result.codes == ["600", "601"]
        assert result.removed_supplies == 2
        assert result.removed_usage == 3
        assert result.touched_patients == 2

        remaining = await db.execute(select(Supply.code))
        assert [code for (code,) in remaining.all()] == ["WC100"]
        assert await _usage_count(db, seed.supply_c) == 1

    @pytest.mark.asyncio
    async def test_touched_patients_get_new_timestamp(self, add_patient, add_usage, db, seed):
        jane = await add_patient("Jane Doe", "2025-03", seed.f1)
        await add_usage((jane, seed.supply_a, 1, 2, None))
        before = (await db.execute(select(Patient.updated_at).where(Patient.id == jane))).scalar_one()

        await self.service.retire_code_range(db, 600, 600)

        after = (await db.execute(select(Patient.updated_at).where(Patient.id == jane))).scalar_one()
        assert after >= before

    @pytest.mark.asyncio
    async def test_non_numeric_codes_ignored(self, db, seed):
        result = await self.service.retire_code_range(db, 0, 10**9)

        assert result.codes == ["600", "601"]
        assert await db.get(Supply, seed.supply_c) is not None

    @pytest.mark.asyncio
    async def test_unicode_digit_codes_ignored(self, db, seed):
        superscript = Supply(code="6\u00b2", description="Odd Code Dressing")
        db.add(superscript)
        await db.flush()

        result = await self.service.retire_code_range(db, 600, 601)

        assert result.codes == ["600", "601"]
        assert await db.get(Supply, superscript.id) is not None

    @pytest.mark.asyncio
    async def test_nothing_in_range(self, db, seed):
        result = await self.service.retire_code_range(db, 700, 799)

        assert result.codes == []
        assert result.removed_supplies == 0
        assert result.removed_usage == 0
        assert result.touched_patients == 0


class TestSpreadsheets:

    def setup_method(self):
        self.service = SupplyService()

    def test_template_headers(self):
        wb = load_workbook(BytesIO(self.service.template()))
        headers = [cell.value for cell in wb.active[1]]

        assert headers == TEMPLATE_HEADERS

    @pytest.mark.asyncio
    async def test_import_creates_and_updates_by_code(self, db, seed):
        raw = build_workbook(
            "Supplies",
            TEMPLATE_HEADERS,
            [
                ["600", "Foam Dressing 4x4 (revised)", "A6209", 3.25],
                ["WC300", "Silver Alginate", "A6196", 12],
                [None, "No code here", None, 1],
                ["WC301", "Bad cost", None, "abc"],
            ],
        )

        result = await self.service.import_xlsx(db, raw)

        assert len(result.success) == 2
        assert result.errors == [
            "Row 4: Missing required fields (AR Code, Item Description)",
            "Row 5: Invalid unit cost 'abc'",
        ]
        assert result.message == "Import completed: 2 successful, 2 errors"

        updated = await db.get(Supply, seed.supply_a)
        assert updated.description == "Foam Dressing 4x4 (revised)"
        assert updated.unit_cost == Decimal("3.25")

        created = (await db.execute(select(Supply).where(Supply.code == "WC300"))).scalar_one()
        assert created.is_custom is True
        assert created.unit_cost == Decimal("12.00")

    @pytest.mark.asyncio
    async def test_import_numeric_codes_read_as_text(self, db, seed):
        raw = build_workbook("Supplies", TEMPLATE_HEADERS, [[650, "Numeric coded item", None, 2]])

        result = await self.service.import_xlsx(db, raw)

        assert result.errors == []
        found = (await db.execute(select(Supply).where(Supply.code == "650"))).scalar_one_or_none()
        assert found is not None

    @pytest.mark.asyncio
    async def test_import_rejects_non_workbook(self, db, seed):
        with pytest.raises(ValidationError):
            await self.service.import_xlsx(db, b"not a spreadsheet")
