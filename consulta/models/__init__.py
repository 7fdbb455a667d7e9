"""SQLAlchemy ORM models for Consulta.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from consulta.models.appointment import Appointment
from consulta.models.audit import AuditLog
from consulta.models.base import Base
from consulta.models.coupon import Coupon, CouponUsage
from consulta.models.enums import (
    AppointmentStatus,
    CouponScope,
    DiscountType,
    GatewayPaymentStatus,
    PaymentKind,
    PaymentStatus,
    RefundStatus,
)
from consulta.models.professional import Professional, Tenant

__all__ = [
    # Base
    "Base",
    # Models
    "Appointment",
    "AuditLog",
    "Coupon",
    "CouponUsage",
    "Professional",
    "Tenant",
    # Enums
    "AppointmentStatus",
    "PaymentStatus",
    "DiscountType",
    "CouponScope",
    "RefundStatus",
    "PaymentKind",
    "GatewayPaymentStatus",
]
