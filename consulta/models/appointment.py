"""Appointment model: a paid, time-boxed session between a patient and a professional.

Rows are never deleted; cancellation is a status so refunds stay traceable.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Time
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from consulta.models.base import Base, TimestampMixin, VersionedMixin
from consulta.models.enums import AppointmentStatus, PaymentStatus


class Appointment(TimestampMixin, VersionedMixin, Base):
    """A booked appointment. Mutated only through AppointmentStore."""

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_appointments_amount_non_negative"),
        Index("ix_appointments_slot", "professional_id", "scheduled_date", "scheduled_time"),
    )

    # Parties
    patient_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    professional_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("professionals.id"), nullable=False
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True
    )

    # Local wall-clock slot in the tenant's timezone
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[time] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, comment="IANA name snapshotted at booking")

    # State
    status: Mapped[str] = mapped_column(
        String(32), default=AppointmentStatus.PENDING.value, nullable=False, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(32), default=PaymentStatus.UNPAID.value, nullable=False
    )

    # Money (minor currency units)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    coupon_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("coupons.id"))

    # Gateway references (Mercado Pago preference ids)
    gateway_reference: Mapped[str | None] = mapped_column(String(255), comment="Booking payment preference")
    supplement_reference: Mapped[str | None] = mapped_column(
        String(255), comment="Reschedule difference payment preference"
    )
    # Gateway payment ids that settled each preference
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64))
    supplement_payment_id: Mapped[str | None] = mapped_column(String(64))
    payment_due_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), index=True, comment="When the live booking checkout lapses"
    )

    # Reschedule hold + snapshot of the slot to revert to if it expires unpaid
    hold_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    previous_professional_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    previous_date: Mapped[date | None] = mapped_column(Date)
    previous_time: Mapped[time | None] = mapped_column(Time)
    previous_amount: Mapped[int | None] = mapped_column(Integer)
    previous_status: Mapped[str | None] = mapped_column(String(32))

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(String(500))

    def __repr__(self) -> str:
        return (
            f"<Appointment id={self.id} status={self.status} "
            f"at={self.scheduled_date} {self.scheduled_time} v={self.version}>"
        )
