"""Reschedule workflow.

Moves an appointment to a new professional/slot and settles the price
difference against the amount already charged:

    difference > 0  payment intent for exactly the difference, then the row
                    moves to pending_reschedule_payment holding the new slot
                    until the difference is paid or the hold expires
    difference < 0  row confirmed on the new slot, then a partial refund of
                    the difference (failure never blocks the reschedule)
    difference = 0  row confirmed on the new slot, no gateway call

A pending appointment that was never paid has nothing to settle: it is
repriced and gets a fresh checkout for the full new price, reported as
``amount_due``. ``price_difference`` is always new price minus old amount.

Only one difference payment is tracked per appointment, so once one has
been settled a further upgrade is refused.

The coupon applied at booking stays baked into ``amount``; the new price is
not re-discounted.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from consulta.appointments.directory import Directory
from consulta.appointments.policy import enforce_cutoff, hold_expiry, require_future_slot, utcnow
from consulta.appointments.store import AppointmentStore
from consulta.config import BookingSettings
from consulta.errors import (
    BookingError,
    GatewayError,
    InvalidTransition,
    NotFound,
    ProfessionalNotFound,
    SlotUnavailable,
)
from consulta.events import emit
from consulta.models.enums import AppointmentStatus, PaymentKind, PaymentStatus, RefundStatus
from consulta.payments.gateway import PaymentGateway
from consulta.schemas.booking import AppointmentRecord, RescheduleChange, RescheduleResult
from consulta.schemas.events import EventType, SystemEvent
from consulta.schemas.payments import PaymentIntent, PaymentIntentRequest
from consulta.workflows.refunds import refund_references
from consulta.workflows.retry import retry_on_conflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Outcome:
    before: AppointmentRecord
    after: AppointmentRecord
    price_difference: int
    amount_due: int
    intent: PaymentIntent | None


class RescheduleWorkflow:
    """Reschedules appointments and settles the price difference."""

    def __init__(
        self,
        store: AppointmentStore,
        gateway: PaymentGateway,
        directory: Directory,
        config: BookingSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._directory = directory
        self._config = config
        self._clock = clock

    async def reschedule(
        self,
        appointment_id: uuid.UUID,
        new_professional_id: uuid.UUID,
        new_date: date,
        new_time: time,
        new_professional_price: int | None = None,
        actor_id: str | None = None,
    ) -> RescheduleResult:
        """Move an appointment and settle the difference.

        Raises:
            NotFound, CutoffViolation, ProfessionalNotFound, InvalidSlot,
            SlotUnavailable, InvalidTransition, GatewayError (upgrade only),
            ConcurrencyConflict, PersistenceError.
        """

        async def attempt() -> _Outcome:
            return await self._attempt(appointment_id, new_professional_id, new_date, new_time, new_professional_price)

        outcome = await retry_on_conflict(attempt, self._config.booking_max_conflict_retries, appointment_id, __name__)
        before, after, difference = outcome.before, outcome.after, outcome.price_difference

        if difference < 0 and before.status is AppointmentStatus.CONFIRMED:
            after = await self._refund_difference(before, after, -difference)

        requires_payment = outcome.intent is not None
        await emit(
            SystemEvent(
                event_type=EventType.APPOINTMENT_RESCHEDULED,
                appointment_id=appointment_id,
                actor_id=actor_id,
                actor_role="patient" if actor_id else "system",
                data={
                    "from": {
                        "professional_id": str(before.professional_id),
                        "date": before.scheduled_date.isoformat(),
                        "time": before.scheduled_time.isoformat(),
                        "amount": before.amount,
                    },
                    "to": {
                        "professional_id": str(after.professional_id),
                        "date": after.scheduled_date.isoformat(),
                        "time": after.scheduled_time.isoformat(),
                        "amount": after.amount,
                    },
                    "price_difference": difference,
                    "amount_due": outcome.amount_due,
                    "status": after.status.value,
                },
                source_module=__name__,
            )
        )
        logger.info(
            "Appointment %s rescheduled: diff=%d status=%s requires_payment=%s",
            appointment_id,
            difference,
            after.status.value,
            requires_payment,
        )
        return RescheduleResult(
            success=True,
            price_difference=difference,
            amount_due=outcome.amount_due,
            requires_payment=requires_payment,
            payment_url=outcome.intent.payment_url if outcome.intent else None,
            appointment=after,
        )

    # ── One read-decide-write cycle ──────────────────────────────────

    async def _attempt(
        self,
        appointment_id: uuid.UUID,
        new_professional_id: uuid.UUID,
        new_date: date,
        new_time: time,
        new_professional_price: int | None,
    ) -> _Outcome:
        now = self._clock()
        current = await self._store.get(appointment_id)
        if current is None:
            raise NotFound(appointment_id=str(appointment_id))
        if current.status not in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED):
            raise InvalidTransition(appointment_id=str(appointment_id), current=current.status.value)

        enforce_cutoff(current, now, self._config.booking_cutoff_hours, "Reagendamento")

        professional = await self._directory.get_professional(new_professional_id)
        if professional is None or professional.tenant_id != current.tenant_id:
            raise ProfessionalNotFound(professional_id=str(new_professional_id))
        new_price = professional.session_price if new_professional_price is None else new_professional_price
        if new_price < 0:
            msg = f"new_professional_price must be >= 0, got {new_price}"
            raise ValueError(msg)

        require_future_slot(new_date, new_time, current.timezone, now)
        if await self._store.is_slot_taken(new_professional_id, new_date, new_time, now, exclude_id=current.id):
            raise SlotUnavailable(professional_id=str(new_professional_id), date=str(new_date), time=str(new_time))

        difference = new_price - current.amount
        slot = {"professional_id": new_professional_id, "scheduled_date": new_date, "scheduled_time": new_time}
        intent: PaymentIntent | None = None
        amount_due = 0

        if current.status is AppointmentStatus.PENDING:
            # never paid: reprice and issue a fresh checkout for the whole amount
            if new_price > 0:
                intent = await self._create_intent(current, new_price, PaymentKind.BOOKING)
                amount_due = new_price
                change = RescheduleChange(
                    **slot,
                    amount=new_price,
                    status=AppointmentStatus.PENDING,
                    payment_status=PaymentStatus.PENDING,
                    gateway_reference=intent.intent_id,
                    payment_due_at=now + timedelta(hours=self._config.booking_unpaid_ttl_hours),
                )
            else:
                # nothing to collect; a payment on the old checkout gets refunded
                change = RescheduleChange(
                    **slot,
                    amount=0,
                    status=AppointmentStatus.CONFIRMED,
                    payment_status=PaymentStatus.PAID,
                )

        elif difference > 0:
            if current.supplement_reference is not None:
                raise InvalidTransition(
                    "Este agendamento já teve uma diferença de reagendamento paga",
                    appointment_id=str(appointment_id),
                    current=current.status.value,
                )
            hold_until = hold_expiry(now, self._config.booking_reschedule_hold_minutes)
            intent = await self._create_intent(current, difference, PaymentKind.RESCHEDULE_DIFFERENCE)
            amount_due = difference
            change = RescheduleChange(
                **slot,
                amount=new_price,
                status=AppointmentStatus.PENDING_RESCHEDULE_PAYMENT,
                payment_status=current.payment_status,
                gateway_reference=current.gateway_reference,
                supplement_reference=intent.intent_id,
                hold_expires_at=hold_until,
            )

        else:
            change = RescheduleChange(
                **slot,
                amount=new_price,
                status=AppointmentStatus.CONFIRMED,
                payment_status=current.payment_status,
                gateway_reference=current.gateway_reference,
                supplement_reference=current.supplement_reference,
            )

        after = await self._store.update_for_reschedule(current, change)
        return _Outcome(
            before=current, after=after, price_difference=difference, amount_due=amount_due, intent=intent
        )

    # ── Gateway interactions ─────────────────────────────────────────

    async def _create_intent(self, current: AppointmentRecord, amount: int, kind: PaymentKind) -> PaymentIntent:
        """Checkout for ``amount``. A failure aborts the reschedule with the row untouched."""
        if kind is PaymentKind.RESCHEDULE_DIFFERENCE:
            title, expires_in = "Diferença de reagendamento", self._config.booking_reschedule_hold_minutes
        else:
            title, expires_in = "Consulta", self._config.booking_unpaid_ttl_hours * 60
        request = PaymentIntentRequest(
            appointment_id=current.id,
            kind=kind,
            title=title,
            description=f"Agendamento {current.id}",
            idempotency_key=f"{current.id}:{current.version}:{kind.value}",
            expires_in_minutes=expires_in,
        )
        try:
            intent = await self._gateway.create_payment_intent(amount, request)
        except GatewayError as exc:
            logger.error("Reschedule payment intent failed for appointment %s: %s", current.id, exc.detail)
            await emit(
                SystemEvent(
                    event_type=EventType.GATEWAY_ERROR,
                    appointment_id=current.id,
                    actor_role="system",
                    data={"operation": "create_payment_intent", "kind": kind.value, "detail": exc.detail},
                    source_module=__name__,
                )
            )
            raise

        await emit(
            SystemEvent(
                event_type=EventType.PAYMENT_INTENT_CREATED,
                appointment_id=current.id,
                data={"intent_id": intent.intent_id, "amount": amount, "kind": kind.value},
                source_module=__name__,
            )
        )
        return intent

    async def _refund_difference(
        self,
        before: AppointmentRecord,
        after: AppointmentRecord,
        amount: int,
    ) -> AppointmentRecord:
        """Partial refund after a downgrade, across the booking and difference payments.

        Failures are reported, never raised.
        """
        status, refunded = await refund_references(
            self._gateway,
            (before.gateway_reference, before.supplement_reference),
            amount,
            before.id,
            __name__,
        )
        if status is RefundStatus.FAILED:
            logger.warning("Downgrade refund failed for appointment %s: refunded %d of %d", before.id, refunded, amount)
        if refunded <= 0:
            return after

        try:
            return await self._store.set_payment_status(after, PaymentStatus.PARTIALLY_REFUNDED)
        except BookingError:
            logger.exception("Partial refund issued but payment_status not updated for appointment %s", before.id)
            return after
