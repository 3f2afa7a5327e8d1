"""
Schemas for the aggregation reporter.

Degraded responses use the same row shapes with zeroed/empty aggregates.
Billing columns (costs and codes) are None for non-admin callers.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from supply_tracker.schemas.common import ApiModel


class DashboardRow(ApiModel):
    """One visible patient with its usage totals."""
    patient_id: int
    patient_name: str
    mrn: Optional[str] = None
    month: str
    facility_id: int
    facility_name: Optional[str] = None
    updated_at: Optional[datetime] = None
    total_units: int = 0
    total_cost: Optional[Decimal] = Field(default=Decimal("0.00"), description="Admin only")
    wound_diagnoses: str = Field(default="", description="Distinct diagnoses joined by '; '")
    supply_codes: Optional[str] = Field(default="", description="Distinct supply codes joined by ', '; admin only")
    hcpcs_codes: Optional[str] = Field(default="", description="Distinct HCPCS codes joined by ', '; admin only")


class ItemizedRow(ApiModel):
    """One (patient, supply) grouping with a nonzero summed quantity."""
    patient_id: int
    patient_name: str
    mrn: Optional[str] = None
    month: str
    facility_id: int
    facility_name: Optional[str] = None
    supply_id: Optional[int] = None
    supply_code: Optional[str] = None
    supply_description: Optional[str] = None
    hcpcs: Optional[str] = None
    total_units: int = 0
    unit_cost: Optional[Decimal] = Decimal("0.00")
    line_cost: Optional[Decimal] = Decimal("0.00")
    wound_diagnoses: str = ""


class OverviewResponse(ApiModel):
    total_patients: int
    total_facilities: int
    total_units: int
    total_cost: Decimal


class StatisticsResponse(ApiModel):
    total_users: int
    pending_users: int
    total_facilities: int
    total_patients: int
    total_supplies: int
