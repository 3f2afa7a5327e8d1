"""
Supply Tracker Backend: User Model
====================================

What:  ORM model for the `users` table.

Rules:
    - role is 'admin' or 'user'
    - a 'user' acts only on its home facility; without one it sees nothing
    - unapproved users cannot authenticate (login or token)
    - deleting the home facility is blocked while patients exist; if it does
      go away the reference becomes NULL
"""

from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from supply_tracker.database import Base
from supply_tracker.models._columns import TimestampMixin

ROLE_ADMIN = "admin"
ROLE_USER = "user"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # bcrypt hash, never serialized
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ROLE_USER,
        server_default=text("'user'"),
    )

    facility_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("facilities.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    is_approved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'user')", name="ck_users_role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
