"""Track settling payment ids and the booking checkout deadline.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    op.add_column("appointments", sa.Column("gateway_payment_id", sa.String(64)))
    op.add_column("appointments", sa.Column("supplement_payment_id", sa.String(64)))
    op.add_column(
        "appointments",
        sa.Column("payment_due_at", sa.DateTime(timezone=True), comment="When the live booking checkout lapses"),
    )
    op.create_index("ix_appointments_payment_due_at", "appointments", ["payment_due_at"])


def downgrade() -> None:
    op.drop_index("ix_appointments_payment_due_at", table_name="appointments")
    op.drop_column("appointments", "payment_due_at")
    op.drop_column("appointments", "supplement_payment_id")
    op.drop_column("appointments", "gateway_payment_id")
