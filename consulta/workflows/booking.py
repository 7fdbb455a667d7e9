"""Booking workflow: CouponValidator → PricingEngine → AppointmentStore → checkout.

A coupon use is reserved before the row is written and released again if
the booking does not go through. A free booking (100% coupon) is confirmed
on the spot; anything else gets a Mercado Pago checkout and stays pending
until the payment webhook confirms it.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime, time, timedelta

from consulta.appointments.directory import Directory
from consulta.appointments.policy import require_future_slot, utcnow
from consulta.appointments.store import AppointmentStore
from consulta.config import BookingSettings
from consulta.coupons.validator import CouponValidator
from consulta.errors import GatewayError, InvalidCoupon, ProfessionalNotFound, SlotUnavailable
from consulta.events import emit
from consulta.models.enums import PaymentKind, PaymentStatus
from consulta.payments.gateway import PaymentGateway
from consulta.pricing import compute_price
from consulta.schemas.booking import AppointmentRecord, BookingResult, NewAppointment
from consulta.schemas.coupons import CouponRejected
from consulta.schemas.events import EventType, SystemEvent
from consulta.schemas.payments import PaymentIntentRequest
from consulta.schemas.pricing import PricedAmount

logger = logging.getLogger(__name__)


class BookingWorkflow:
    """Creates appointments."""

    def __init__(
        self,
        store: AppointmentStore,
        gateway: PaymentGateway,
        directory: Directory,
        validator: CouponValidator,
        config: BookingSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._directory = directory
        self._validator = validator
        self._config = config
        self._clock = clock

    async def book(
        self,
        patient_id: uuid.UUID,
        professional_id: uuid.UUID,
        scheduled_date: date,
        scheduled_time: time,
        coupon_code: str | None = None,
    ) -> BookingResult:
        """Book a slot.

        Raises:
            ProfessionalNotFound, InvalidSlot, SlotUnavailable, InvalidCoupon,
            GatewayError, PersistenceError.
        """
        now = self._clock()
        professional = await self._directory.get_professional(professional_id)
        if professional is None:
            raise ProfessionalNotFound(professional_id=str(professional_id))

        tz_name = await self._directory.tenant_timezone(professional.tenant_id)
        require_future_slot(scheduled_date, scheduled_time, tz_name, now)
        if await self._store.is_slot_taken(professional_id, scheduled_date, scheduled_time, now):
            raise SlotUnavailable(professional_id=str(professional_id), date=str(scheduled_date))

        coupon_id: uuid.UUID | None = None
        usage_id: uuid.UUID | None = None
        if coupon_code:
            decision = await self._validator.validate(
                coupon_code, professional_id, professional.session_price, professional.tenant_id, patient_id
            )
            if isinstance(decision, CouponRejected):
                raise InvalidCoupon(decision.reason.value, decision.message)
            price = decision.price
            coupon_id = decision.coupon_id
            usage_id = await self._validator.redeem(decision, patient_id)
        else:
            price = compute_price(professional.session_price)

        new = NewAppointment(
            patient_id=patient_id,
            professional_id=professional_id,
            tenant_id=professional.tenant_id,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            timezone=tz_name,
            amount=price.final,
            coupon_id=coupon_id,
        )
        try:
            appointment = await self._store.create(new)
        except Exception:
            if usage_id is not None:
                await self._validator.release_usage(usage_id)
            raise

        if price.final == 0:
            appointment = await self._store.mark_confirmed(appointment, payment_status=PaymentStatus.PAID)
            payment_url = None
        else:
            appointment, payment_url = await self._start_checkout(appointment, price, usage_id)

        if usage_id is not None:
            await self._validator.attach_usage(usage_id, appointment.id)
            await emit(
                SystemEvent(
                    event_type=EventType.COUPON_REDEEMED,
                    appointment_id=appointment.id,
                    actor_id=str(patient_id),
                    actor_role="patient",
                    data={"code": coupon_code, "discount": price.discount},
                    source_module=__name__,
                )
            )

        await emit(
            SystemEvent(
                event_type=EventType.APPOINTMENT_BOOKED,
                appointment_id=appointment.id,
                actor_id=str(patient_id),
                actor_role="patient",
                data={
                    "professional_id": str(professional_id),
                    "date": scheduled_date.isoformat(),
                    "time": scheduled_time.isoformat(),
                    "amount": price.final,
                    "status": appointment.status.value,
                },
                source_module=__name__,
            )
        )
        return BookingResult(
            appointment=appointment,
            original_amount=price.original,
            discount_amount=price.discount,
            final_amount=price.final,
            requires_payment=payment_url is not None,
            payment_url=payment_url,
        )

    async def _start_checkout(
        self,
        appointment: AppointmentRecord,
        price: PricedAmount,
        usage_id: uuid.UUID | None,
    ) -> tuple[AppointmentRecord, str]:
        """Create the booking checkout; on gateway failure the booking is cancelled."""
        request = PaymentIntentRequest(
            appointment_id=appointment.id,
            kind=PaymentKind.BOOKING,
            title="Consulta",
            description=f"Agendamento {appointment.id}",
            idempotency_key=f"{appointment.id}:booking",
            expires_in_minutes=self._config.booking_unpaid_ttl_hours * 60,
        )
        try:
            intent = await self._gateway.create_payment_intent(price.final, request)
        except GatewayError as exc:
            logger.error("Checkout creation failed for appointment %s: %s", appointment.id, exc.detail)
            await self._store.mark_cancelled(appointment, reason="payment_setup_failed", payment_status=PaymentStatus.FAILED)
            if usage_id is not None:
                await self._validator.release_usage(usage_id)
            await emit(
                SystemEvent(
                    event_type=EventType.GATEWAY_ERROR,
                    appointment_id=appointment.id,
                    actor_role="system",
                    data={"operation": "create_payment_intent", "kind": PaymentKind.BOOKING.value, "detail": exc.detail},
                    source_module=__name__,
                )
            )
            raise

        due_at = self._clock() + timedelta(hours=self._config.booking_unpaid_ttl_hours)
        appointment = await self._store.attach_gateway_reference(appointment, intent.intent_id, due_at)
        await emit(
            SystemEvent(
                event_type=EventType.PAYMENT_INTENT_CREATED,
                appointment_id=appointment.id,
                data={"intent_id": intent.intent_id, "amount": price.final, "kind": PaymentKind.BOOKING.value},
                source_module=__name__,
            )
        )
        return appointment, intent.payment_url
