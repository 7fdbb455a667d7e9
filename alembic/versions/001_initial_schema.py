"""Initial schema: tenants, professionals, coupons, appointments, coupon_usage, audit_log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Reference data ─────────────────────────────────────────────────

    op.create_table(
        "tenants",
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="America/Sao_Paulo"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "professionals",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("display_name", sa.String(200), nullable=False),
        sa.Column("session_price", sa.Integer(), nullable=False, comment="Minor currency units"),
        sa.Column(
            "institution_ids",
            postgresql.ARRAY(postgresql.UUID(as_uuid=True)),
            comment="Institutions this professional is linked to",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_professionals_tenant_id", "professionals", ["tenant_id"])

    # ── Coupons ────────────────────────────────────────────────────────

    op.create_table(
        "coupons",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("institution_id", postgresql.UUID(as_uuid=True)),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("professional_scope", sa.String(32), nullable=False, server_default="institution_professionals"),
        sa.Column("professional_scope_ids", postgresql.ARRAY(postgresql.UUID(as_uuid=True))),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column(
            "discount_value",
            sa.Numeric(12, 2),
            nullable=False,
            comment="Percent, or minor units for fixed_amount",
        ),
        sa.Column("max_discount_amount", sa.Integer(), comment="Cap for percentage coupons"),
        sa.Column("minimum_purchase_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("maximum_uses", sa.Integer(), comment="Global cap, NULL = unlimited"),
        sa.Column("uses_per_user", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "(discount_type = 'percentage' AND discount_value > 0 AND discount_value <= 100)"
            " OR (discount_type = 'fixed_amount' AND discount_value > 0)",
            name="ck_coupons_discount_value",
        ),
    )
    op.create_index("ix_coupons_tenant_id", "coupons", ["tenant_id"])
    op.create_index(
        "uq_coupons_tenant_code",
        "coupons",
        ["tenant_id", sa.text("upper(code)")],
        unique=True,
    )

    # ── Appointments ───────────────────────────────────────────────────

    op.create_table(
        "appointments",
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "professional_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("professionals.id"), nullable=False
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("scheduled_time", sa.Time(), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, comment="IANA name snapshotted at booking"),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(32), nullable=False, server_default="unpaid"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("coupon_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("coupons.id")),
        sa.Column("gateway_reference", sa.String(255), comment="Booking payment preference"),
        sa.Column("supplement_reference", sa.String(255), comment="Reschedule difference payment preference"),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True)),
        sa.Column("previous_professional_id", postgresql.UUID(as_uuid=True)),
        sa.Column("previous_date", sa.Date()),
        sa.Column("previous_time", sa.Time()),
        sa.Column("previous_amount", sa.Integer()),
        sa.Column("previous_status", sa.String(32)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancel_reason", sa.String(500)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("amount >= 0", name="ck_appointments_amount_non_negative"),
    )
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_tenant_id", "appointments", ["tenant_id"])
    op.create_index("ix_appointments_status", "appointments", ["status"])
    op.create_index("ix_appointments_hold_expires_at", "appointments", ["hold_expires_at"])
    op.create_index(
        "ix_appointments_slot", "appointments", ["professional_id", "scheduled_date", "scheduled_time"]
    )

    op.create_table(
        "coupon_usage",
        sa.Column("coupon_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("appointments.id")),
        sa.Column("original_amount", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False),
        sa.Column("final_amount", sa.Integer(), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_coupon_usage_coupon_user", "coupon_usage", ["coupon_id", "user_id"])

    # ── Audit ──────────────────────────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=True)),
        sa.Column("actor_id", sa.String(100), comment="User ID, admin, or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="patient, admin, gateway, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_appointment_id", "audit_log", ["appointment_id"])


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("audit_log")
    op.drop_table("coupon_usage")
    op.drop_table("appointments")
    op.drop_table("coupons")
    op.drop_table("professionals")
    op.drop_table("tenants")
