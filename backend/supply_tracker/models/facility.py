"""
Supply Tracker Backend: Facility Model
========================================

What:  ORM model for the `facilities` table.
Who:   Referenced by users (home facility) and patients (owning facility).

Lifecycle:
    Admin-created, renamed and deleted. Deletion is refused while any patient
    references the facility (see facility_service.delete_facility).
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from supply_tracker.database import Base
from supply_tracker.models._columns import TimestampMixin


class Facility(TimestampMixin, Base):
    """An organizational site (hospital, clinic) owning patients and users."""

    __tablename__ = "facilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Display name, unique across the deployment",
    )

    def __repr__(self) -> str:
        return f"<Facility(id={self.id}, name='{self.name}')>"
