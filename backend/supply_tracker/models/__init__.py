"""
ORM models. Importing this package registers every table with Base.metadata.
"""

from supply_tracker.models.facility import Facility
from supply_tracker.models.supply import Supply
from supply_tracker.models.user import User, ROLE_ADMIN, ROLE_USER
from supply_tracker.models.patient import Patient
from supply_tracker.models.usage import UsageRecord

__all__ = [
    "Facility",
    "Supply",
    "User",
    "ROLE_ADMIN",
    "ROLE_USER",
    "Patient",
    "UsageRecord",
]
