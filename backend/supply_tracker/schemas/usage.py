"""Schemas for the usage ledger (the `tracking` table)."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from supply_tracker.models.usage import MAX_DAY_OF_MONTH, MIN_DAY_OF_MONTH
from supply_tracker.schemas.common import ApiModel


class RecordUsageRequest(ApiModel):
    """
    Body of POST /api/usage.

    Example:
        {"patientId": 12, "supplyId": 3, "dayOfMonth": 14, "quantity": 2,
         "woundDiagnosis": "Stage 2 pressure ulcer"}
    """
    patient_id: int
    supply_id: int
    day_of_month: int = Field(strict=True, ge=MIN_DAY_OF_MONTH, le=MAX_DAY_OF_MONTH)
    quantity: int = Field(strict=True, ge=0)
    wound_diagnosis: Optional[str] = Field(
        default=None,
        description="Empty or absent keeps the diagnosis already stored for this cell",
    )


class UsageRecordResponse(ApiModel):
    id: int
    patient_id: int
    supply_id: int
    day_of_month: int
    quantity: int
    wound_diagnosis: Optional[str] = None
    supply_code: Optional[str] = None
    supply_description: Optional[str] = None
    hcpcs: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    updated_at: Optional[datetime] = None


class RecordUsageResponse(ApiModel):
    message: str = "Usage recorded"
    record: UsageRecordResponse
