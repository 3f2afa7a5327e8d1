"""
Supply Tracker Backend: Patient Model
=======================================

What:  ORM model for the `patients` table (per-month patient records).

Invariants:
    - (name, month, facility_id) is unique: one record per patient name per
      facility per month
    - month is a 'YYYY-MM' token
    - a patient owns its usage records; deleting the patient removes them
"""

from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from supply_tracker.database import Base
from supply_tracker.models._columns import TimestampMixin


class Patient(TimestampMixin, Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Year-month token, YYYY-MM",
    )

    mrn: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Medical record number",
    )

    # RESTRICT: the facility service refuses the delete first and reports
    # the patient count
    facility_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("facilities.id", ondelete="RESTRICT"),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("name", "month", "facility_id", name="uq_patients_name_month_facility"),
        Index("idx_patients_facility", "facility_id"),
        Index("idx_patients_month", "month"),
    )

    def __repr__(self) -> str:
        return (
            f"<Patient(id={self.id}, name='{self.name}', month='{self.month}', "
            f"facility_id={self.facility_id})>"
        )
