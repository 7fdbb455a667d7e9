"""Coupon and CouponUsage models: institution discount codes and their redemption ledger."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column

from consulta.models.base import Base, TimestampMixin
from consulta.models.enums import CouponScope


class Coupon(TimestampMixin, Base):
    """A discount code issued by an institution inside a tenant."""

    __tablename__ = "coupons"
    __table_args__ = (
        # codes are unique per tenant regardless of case
        Index("uq_coupons_tenant_code", "tenant_id", text("upper(code)"), unique=True),
        CheckConstraint(
            "(discount_type = 'percentage' AND discount_value > 0 AND discount_value <= 100)"
            " OR (discount_type = 'fixed_amount' AND discount_value > 0)",
            name="ck_coupons_discount_value",
        ),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True
    )
    institution_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Scope
    professional_scope: Mapped[str] = mapped_column(
        String(32), default=CouponScope.INSTITUTION_PROFESSIONALS.value, nullable=False
    )
    professional_scope_ids: Mapped[list[uuid.UUID] | None] = mapped_column(ARRAY(UUID(as_uuid=True)))

    # Discount
    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="Percent, or minor units for fixed_amount"
    )
    max_discount_amount: Mapped[int | None] = mapped_column(Integer, comment="Cap for percentage coupons")

    # Constraints
    minimum_purchase_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    maximum_uses: Mapped[int | None] = mapped_column(Integer, comment="Global cap, NULL = unlimited")
    uses_per_user: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Coupon code={self.code} type={self.discount_type} active={self.is_active}>"


class CouponUsage(TimestampMixin, Base):
    """Append-only redemption ledger.

    appointment_id stays NULL while the booking that redeemed the coupon is in flight.
    """

    __tablename__ = "coupon_usage"
    __table_args__ = (Index("ix_coupon_usage_coupon_user", "coupon_id", "user_id"),)

    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupons.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id")
    )

    original_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    final_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<CouponUsage coupon={self.coupon_id} user={self.user_id} appt={self.appointment_id}>"
