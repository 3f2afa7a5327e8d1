"""Schemas for the supply catalog, spreadsheet import and range retirement."""

from decimal import Decimal
from typing import List, Optional

from pydantic import Field, model_validator

from supply_tracker.schemas.common import ApiModel


class SupplyWrite(ApiModel):
    code: str = Field(min_length=1, max_length=50, description="Stable supply code")
    description: str = Field(min_length=1)
    hcpcs: Optional[str] = Field(default=None, max_length=10)
    unit_cost: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=10, decimal_places=2)


class SupplyResponse(ApiModel):
    id: int
    code: str
    description: str
    hcpcs: Optional[str] = None
    unit_cost: Decimal
    is_custom: bool
    is_active: bool


class SupplyDeleteResponse(ApiModel):
    message: str
    action: str = Field(description="deleted, deactivated or cascaded")
    removed_usage: int = Field(default=0, description="Usage records removed with the supply")


class RetireRangeRequest(ApiModel):
    first_code: int = Field(ge=0)
    last_code: int = Field(ge=0)

    @model_validator(mode="after")
    def check_order(self) -> "RetireRangeRequest":
        if self.first_code > self.last_code:
            raise ValueError("firstCode must not exceed lastCode")
        return self


class RetireRangeResponse(ApiModel):
    codes: List[str] = Field(description="Supply codes that were removed")
    removed_supplies: int
    removed_usage: int
    touched_patients: int


class ImportResponse(ApiModel):
    """Outcome of a spreadsheet import; rows are reported individually."""
    message: str
    success: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
