"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; columns store the `.value`.
"""

from __future__ import annotations

from enum import Enum


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    # upgraded reschedule: new slot held until the difference is paid or the hold expires
    PENDING_RESCHEDULE_PAYMENT = "pending_reschedule_payment"


class PaymentStatus(str, Enum):
    """Money state of an appointment, independent of its lifecycle status."""

    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    FAILED = "failed"


class DiscountType(str, Enum):
    """How a coupon's discount_value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"  # minor currency units


class CouponScope(str, Enum):
    """Which professionals a coupon may discount."""

    ALL_TENANT = "all_tenant"
    INSTITUTION_PROFESSIONALS = "institution_professionals"
    PROFESSIONAL_LIST = "professional_list"


class RefundStatus(str, Enum):
    """Outcome of the refund attempt attached to a cancellation."""

    NOT_NEEDED = "not_needed"
    PROCESSED = "processed"
    FAILED = "failed"


class PaymentKind(str, Enum):
    """What a payment intent pays for: carried in gateway metadata."""

    BOOKING = "booking"
    RESCHEDULE_DIFFERENCE = "reschedule_difference"


class GatewayPaymentStatus(str, Enum):
    """Payment states reported by Mercado Pago."""

    APPROVED = "approved"
    PENDING = "pending"
    IN_PROCESS = "in_process"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"
    UNKNOWN = "unknown"
