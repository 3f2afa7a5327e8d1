"""Create supply tracker tables

Revision ID: 001
Revises: None
Create Date: 2025-01-15 00:00:00.000000+00:00

What:  Creates facilities, supplies, users, patients and tracking with their
       uniqueness constraints, checks and indexes.

Rollback: downgrade() drops all five tables (destructive).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "facilities",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "name",
            sa.String(255),
            nullable=False,
            comment="Display name, unique across the deployment",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "supplies",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("code", sa.String(50), nullable=False, comment="Stable external supply code"),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("hcpcs", sa.String(10), nullable=True, comment="Optional HCPCS classification code"),
        sa.Column("unit_cost", sa.Numeric(10, 2), server_default=sa.text("0.00"), nullable=False),
        sa.Column("is_custom", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_supplies_unit_cost_non_negative"),
    )
    op.create_index("idx_supplies_active_code", "supplies", ["is_active", "code"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), server_default=sa.text("'user'"), nullable=False),
        sa.Column("facility_id", sa.Integer(), nullable=True),
        sa.Column("is_approved", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="SET NULL"),
        sa.CheckConstraint("role IN ('admin', 'user')", name="ck_users_role"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_facility_id", "users", ["facility_id"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("month", sa.String(7), nullable=False, comment="Year-month token, YYYY-MM"),
        sa.Column("mrn", sa.String(50), nullable=True, comment="Medical record number"),
        sa.Column("facility_id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["facility_id"], ["facilities.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("name", "month", "facility_id", name="uq_patients_name_month_facility"),
    )
    op.create_index("idx_patients_facility", "patients", ["facility_id"])
    op.create_index("idx_patients_month", "patients", ["month"])

    op.create_table(
        "tracking",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("supply_id", sa.Integer(), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "wound_dx",
            sa.Text(),
            nullable=True,
            comment="Wound diagnosis; kept across updates that send none",
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["supply_id"], ["supplies.id"], ondelete="CASCADE"),
        # the usage upsert's ON CONFLICT target
        sa.UniqueConstraint(
            "patient_id", "supply_id", "day_of_month", name="uq_tracking_patient_supply_day"
        ),
        sa.CheckConstraint(
            "day_of_month >= 1 AND day_of_month <= 31", name="ck_tracking_day_of_month"
        ),
        sa.CheckConstraint("quantity >= 0", name="ck_tracking_quantity_non_negative"),
    )
    op.create_index("idx_tracking_supply", "tracking", ["supply_id"])


def downgrade() -> None:
    op.drop_index("idx_tracking_supply", table_name="tracking")
    op.drop_table("tracking")
    op.drop_index("idx_patients_month", table_name="patients")
    op.drop_index("idx_patients_facility", table_name="patients")
    op.drop_table("patients")
    op.drop_index("ix_users_facility_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_index("idx_supplies_active_code", table_name="supplies")
    op.drop_table("supplies")
    op.drop_table("facilities")
