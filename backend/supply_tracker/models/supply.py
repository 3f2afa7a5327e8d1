"""
Supply Tracker Backend: Supply Model
======================================

What:  ORM model for the `supplies` table (the billable supply catalog).
Who:   Referenced by usage records; edited by admins.

Column notes:
    - code: stable external identifier ("AR code"), unique
    - hcpcs: optional billing classification code (e.g. A6209)
    - unit_cost: NUMERIC(10,2), never negative
    - is_custom: false for catalog-seeded items, true for admin-added ones
    - is_active: false once a referenced supply is deactivated instead of
      deleted; inactive supplies drop out of the catalog listing but keep
      contributing to reports
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from supply_tracker.database import Base
from supply_tracker.models._columns import TimestampMixin


class Supply(TimestampMixin, Base):
    """A billable wound-care item identified by a stable code."""

    __tablename__ = "supplies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Stable external supply code",
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)

    hcpcs: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        comment="Optional HCPCS classification code",
    )

    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        server_default=text("0.00"),
    )

    is_custom: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    __table_args__ = (
        CheckConstraint("unit_cost >= 0", name="ck_supplies_unit_cost_non_negative"),
        Index("idx_supplies_active_code", "is_active", "code"),
    )

    def __repr__(self) -> str:
        return f"<Supply(id={self.id}, code='{self.code}', unit_cost={self.unit_cost})>"
