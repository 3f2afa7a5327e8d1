"""
Supply Tracker Backend: Usage Record Model
============================================

What:  ORM model for the `tracking` table, the usage ledger's atomic fact:
       how many units of a supply a patient used on one day of the month.

Invariants:
    - (patient_id, supply_id, day_of_month) is unique; the ledger upserts on
      this key (uq_tracking_patient_supply_day) and never stores duplicates
    - 1 <= day_of_month <= 31
    - quantity >= 0
    - wound_dx is NULL rather than '' when no diagnosis was given

Query Patterns:
    - Patient ledger: WHERE patient_id = :id ORDER BY supply_id, day_of_month
      → served by the unique index (leading column patient_id)
    - Report joins: tracking ⨝ supplies on supply_id → idx_tracking_supply
"""

from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from supply_tracker.database import Base
from supply_tracker.models._columns import TimestampMixin

MIN_DAY_OF_MONTH = 1
MAX_DAY_OF_MONTH = 31

USAGE_KEY_CONSTRAINT = "uq_tracking_patient_supply_day"


class UsageRecord(TimestampMixin, Base):
    __tablename__ = "tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    patient_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )

    supply_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("supplies.id", ondelete="CASCADE"),
        nullable=False,
    )

    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )

    wound_dx: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Wound diagnosis; kept across updates that send none",
    )

    __table_args__ = (
        UniqueConstraint("patient_id", "supply_id", "day_of_month", name=USAGE_KEY_CONSTRAINT),
        CheckConstraint(
            f"day_of_month >= {MIN_DAY_OF_MONTH} AND day_of_month <= {MAX_DAY_OF_MONTH}",
            name="ck_tracking_day_of_month",
        ),
        CheckConstraint("quantity >= 0", name="ck_tracking_quantity_non_negative"),
        Index("idx_tracking_supply", "supply_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(patient_id={self.patient_id}, supply_id={self.supply_id}, "
            f"day={self.day_of_month}, quantity={self.quantity})>"
        )
