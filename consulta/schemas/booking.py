"""Immutable value objects exchanged between the store and the workflows.

AppointmentRecord is a detached snapshot of one appointment row taken at a
known ``version``; workflows decide on it and hand it back to the store,
which refuses the write if the row moved on in the meantime.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from consulta.models.enums import AppointmentStatus, PaymentStatus, RefundStatus


class AppointmentRecord(BaseModel):
    """Snapshot of an appointment row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    patient_id: uuid.UUID
    professional_id: uuid.UUID
    tenant_id: uuid.UUID
    scheduled_date: date
    scheduled_time: time
    timezone: str
    status: AppointmentStatus
    payment_status: PaymentStatus
    amount: int
    coupon_id: uuid.UUID | None = None
    gateway_reference: str | None = None
    supplement_reference: str | None = None
    gateway_payment_id: str | None = None
    supplement_payment_id: str | None = None
    payment_due_at: datetime | None = None
    hold_expires_at: datetime | None = None
    previous_professional_id: uuid.UUID | None = None
    previous_date: date | None = None
    previous_time: time | None = None
    previous_amount: int | None = None
    previous_status: AppointmentStatus | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def scheduled_at(self) -> datetime:
        """Slot start as an aware datetime in the appointment's timezone."""
        return datetime.combine(self.scheduled_date, self.scheduled_time, tzinfo=ZoneInfo(self.timezone))

    def hold_active(self, now: datetime) -> bool:
        return (
            self.status is AppointmentStatus.PENDING_RESCHEDULE_PAYMENT
            and self.hold_expires_at is not None
            and self.hold_expires_at > now
        )


class NewAppointment(BaseModel):
    """Fields needed to insert a pending appointment."""

    model_config = ConfigDict(frozen=True)

    patient_id: uuid.UUID
    professional_id: uuid.UUID
    tenant_id: uuid.UUID
    scheduled_date: date
    scheduled_time: time
    timezone: str
    amount: int = Field(ge=0)
    coupon_id: uuid.UUID | None = None


class RescheduleChange(BaseModel):
    """Target state of a reschedule, written in one compare-and-set."""

    model_config = ConfigDict(frozen=True)

    professional_id: uuid.UUID
    scheduled_date: date
    scheduled_time: time
    amount: int = Field(ge=0)
    status: AppointmentStatus
    payment_status: PaymentStatus
    gateway_reference: str | None = None
    supplement_reference: str | None = None
    # set only when a fresh booking checkout replaces the old one
    payment_due_at: datetime | None = None
    # set only for upgrades awaiting the difference payment
    hold_expires_at: datetime | None = None


class CancellationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    refund_status: RefundStatus
    appointment: AppointmentRecord


class RescheduleResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    price_difference: int
    # what the issued checkout charges; 0 when nothing is due
    amount_due: int = 0
    requires_payment: bool
    payment_url: str | None = None
    appointment: AppointmentRecord


class BookingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    appointment: AppointmentRecord
    original_amount: int
    discount_amount: int
    final_amount: int
    requires_payment: bool
    payment_url: str | None = None


class MaintenanceReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_processed: int
    succeeded: int
    failed: int
    appointment_ids: list[uuid.UUID] = Field(default_factory=list)
