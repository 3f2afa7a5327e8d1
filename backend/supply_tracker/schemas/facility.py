"""Schemas for the facility directory."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from supply_tracker.schemas.common import ApiModel


class FacilityWrite(ApiModel):
    name: str = Field(max_length=255, description="Unique facility name")


class FacilityPublic(ApiModel):
    id: int
    name: str


class FacilityResponse(ApiModel):
    id: int
    name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
