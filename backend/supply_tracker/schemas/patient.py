"""Schemas for the patient registry."""

import re
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from supply_tracker.schemas.common import ApiModel

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class PatientWrite(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    month: str = Field(description="Year-month token, YYYY-MM")
    mrn: Optional[str] = Field(default=None, max_length=50)
    facility_id: int

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("month")
    @classmethod
    def validate_month(cls, v: str) -> str:
        v = v.strip()
        if not MONTH_PATTERN.match(v):
            raise ValueError("month must be formatted YYYY-MM")
        return v


class PatientResponse(ApiModel):
    id: int
    name: str
    month: str
    mrn: Optional[str] = None
    facility_id: int
    facility_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
