"""Request and response bodies of the HTTP API.

Wire format is camelCase; Python attribute names stay snake_case.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from consulta.models.enums import AppointmentStatus, PaymentStatus, RefundStatus
from consulta.schemas.booking import (
    AppointmentRecord,
    BookingResult,
    CancellationResult,
    MaintenanceReport,
    RescheduleResult,
)
from consulta.schemas.coupons import CouponDecision, CouponRejected


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Requests ─────────────────────────────────────────────────────────


class BookAppointmentRequest(CamelModel):
    professional_id: uuid.UUID
    scheduled_date: date
    scheduled_time: time
    coupon_code: str | None = Field(default=None, max_length=50)


class CancelAppointmentRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=500)


class RescheduleAppointmentRequest(CamelModel):
    new_professional_id: uuid.UUID
    new_date: date
    new_time: time


class ValidateCouponRequest(CamelModel):
    code: str = Field(min_length=1, max_length=50)
    professional_id: uuid.UUID
    amount: int = Field(ge=0, description="Minor units")
    tenant_id: uuid.UUID


class PaymentNotificationData(BaseModel):
    id: str | None = None


class PaymentNotification(BaseModel):
    """Mercado Pago webhook body. Only ``type`` and ``data.id`` are used."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None
    action: str | None = None
    data: PaymentNotificationData = Field(default_factory=PaymentNotificationData)


# ── Responses ────────────────────────────────────────────────────────


class AppointmentView(CamelModel):
    id: uuid.UUID
    patient_id: uuid.UUID
    professional_id: uuid.UUID
    scheduled_date: date
    scheduled_time: time
    timezone: str
    status: AppointmentStatus
    payment_status: PaymentStatus
    amount: int
    coupon_id: uuid.UUID | None = None
    hold_expires_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int

    @classmethod
    def from_record(cls, record: AppointmentRecord) -> AppointmentView:
        return cls.model_validate(record.model_dump(include=set(cls.model_fields)))


class BookingResponse(CamelModel):
    appointment: AppointmentView
    original_amount: int
    discount_amount: int
    final_amount: int
    requires_payment: bool
    payment_url: str | None = None

    @classmethod
    def from_result(cls, result: BookingResult) -> BookingResponse:
        return cls(
            appointment=AppointmentView.from_record(result.appointment),
            original_amount=result.original_amount,
            discount_amount=result.discount_amount,
            final_amount=result.final_amount,
            requires_payment=result.requires_payment,
            payment_url=result.payment_url,
        )


class CancellationResponse(CamelModel):
    success: bool
    refund_status: RefundStatus
    appointment: AppointmentView

    @classmethod
    def from_result(cls, result: CancellationResult) -> CancellationResponse:
        return cls(
            success=result.success,
            refund_status=result.refund_status,
            appointment=AppointmentView.from_record(result.appointment),
        )


class RescheduleResponse(CamelModel):
    success: bool
    price_difference: int
    amount_due: int = 0
    requires_payment: bool
    payment_url: str | None = None
    appointment: AppointmentView

    @classmethod
    def from_result(cls, result: RescheduleResult) -> RescheduleResponse:
        return cls(
            success=result.success,
            price_difference=result.price_difference,
            amount_due=result.amount_due,
            requires_payment=result.requires_payment,
            payment_url=result.payment_url,
            appointment=AppointmentView.from_record(result.appointment),
        )


class CouponValidationResponse(CamelModel):
    is_valid: bool
    coupon_id: uuid.UUID | None = None
    discount_amount: int = 0
    final_amount: int
    reason: str | None = None
    error_message: str | None = None

    @classmethod
    def from_decision(cls, decision: CouponDecision, amount: int) -> CouponValidationResponse:
        if isinstance(decision, CouponRejected):
            return cls(
                is_valid=False,
                final_amount=amount,
                reason=decision.reason.value,
                error_message=decision.message,
            )
        return cls(
            is_valid=True,
            coupon_id=decision.coupon_id,
            discount_amount=decision.price.discount,
            final_amount=decision.price.final,
        )


class MaintenanceResponse(CamelModel):
    total_processed: int
    succeeded: int
    failed: int
    appointment_ids: list[uuid.UUID]

    @classmethod
    def from_report(cls, report: MaintenanceReport) -> MaintenanceResponse:
        return cls.model_validate(report.model_dump())


class WebhookAck(CamelModel):
    received: bool = True
    outcome: str | None = None
