"""Appointment store: the only writer of the appointments table.

Every read opens a fresh session so workflows always decide on the current
row. Every mutation is a single-row compare-and-set:

    UPDATE appointments SET ..., version = version + 1
    WHERE id = :id AND version = :seen_version
    RETURNING *

Zero returned rows means a concurrent writer (a payment webhook, a second
tab) won; the caller gets ConcurrencyConflict and re-runs its
read-decide-write cycle.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consulta.errors import ConcurrencyConflict, InvalidTransition, PersistenceError
from consulta.models.appointment import Appointment
from consulta.models.enums import AppointmentStatus, PaymentStatus
from consulta.schemas.booking import AppointmentRecord, NewAppointment, RescheduleChange

logger = logging.getLogger(__name__)

_S = AppointmentStatus

# Target statuses reachable from each status (reschedules are modeled in place).
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    _S.PENDING: frozenset({_S.PENDING, _S.CONFIRMED, _S.CANCELLED}),
    _S.CONFIRMED: frozenset({_S.CONFIRMED, _S.CANCELLED, _S.COMPLETED, _S.PENDING_RESCHEDULE_PAYMENT}),
    _S.PENDING_RESCHEDULE_PAYMENT: frozenset({_S.CONFIRMED, _S.CANCELLED}),
    _S.CANCELLED: frozenset(),
    _S.COMPLETED: frozenset(),
}

# Statuses that occupy their slot
_BLOCKING_STATUSES = (_S.PENDING.value, _S.CONFIRMED.value, _S.COMPLETED.value)

_CLEARED_HOLD: dict[str, Any] = {
    "hold_expires_at": None,
    "previous_professional_id": None,
    "previous_date": None,
    "previous_time": None,
    "previous_amount": None,
    "previous_status": None,
}


def check_transition(current: AppointmentRecord, target: AppointmentStatus) -> None:
    """Raise InvalidTransition unless ``current.status -> target`` is allowed."""
    if target not in ALLOWED_TRANSITIONS[current.status]:
        raise InvalidTransition(
            appointment_id=str(current.id),
            current=current.status.value,
            target=target.value,
        )


class AppointmentStore:
    """Owns appointment rows and their state transitions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ── Reads ────────────────────────────────────────────────────────

    async def get(self, appointment_id: uuid.UUID) -> AppointmentRecord | None:
        """Fetch the current row. Never cached."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(Appointment).where(Appointment.id == appointment_id))
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load appointment %s", appointment_id)
            raise PersistenceError(appointment_id=str(appointment_id)) from exc

        return AppointmentRecord.model_validate(row) if row is not None else None

    async def is_slot_taken(
        self,
        professional_id: uuid.UUID,
        scheduled_date: date,
        scheduled_time: time,
        now: datetime,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        """True if another appointment occupies or holds this slot.

        An upgraded reschedule blocks both its new slot (until the hold
        expires) and the slot it may revert to.
        """
        same_slot = and_(
            Appointment.professional_id == professional_id,
            Appointment.scheduled_date == scheduled_date,
            Appointment.scheduled_time == scheduled_time,
        )
        held = Appointment.status == _S.PENDING_RESCHEDULE_PAYMENT.value
        revert_target = and_(
            held,
            Appointment.previous_professional_id == professional_id,
            Appointment.previous_date == scheduled_date,
            Appointment.previous_time == scheduled_time,
        )
        condition = or_(
            and_(same_slot, Appointment.status.in_(_BLOCKING_STATUSES)),
            and_(same_slot, held, Appointment.hold_expires_at > now),
            revert_target,
        )
        stmt = select(func.count()).select_from(Appointment).where(condition)
        if exclude_id is not None:
            stmt = stmt.where(Appointment.id != exclude_id)

        try:
            async with self._session_factory() as db:
                count = (await db.execute(stmt)).scalar_one()
        except SQLAlchemyError as exc:
            logger.exception("Slot lookup failed for professional %s", professional_id)
            raise PersistenceError() from exc
        return count > 0

    async def find_expired_holds(self, now: datetime) -> list[AppointmentRecord]:
        """Upgraded reschedules whose difference was not paid in time."""
        stmt = select(Appointment).where(
            Appointment.status == _S.PENDING_RESCHEDULE_PAYMENT.value,
            Appointment.hold_expires_at <= now,
        )
        return await self._fetch_many(stmt)

    async def find_unpaid_pending(self, now: datetime, created_before: datetime) -> list[AppointmentRecord]:
        """Pending bookings whose payment was never collected.

        A row is due once its checkout deadline has passed. Rows without a
        recorded deadline fall back to their creation time.
        """
        lapsed = or_(
            Appointment.payment_due_at <= now,
            and_(Appointment.payment_due_at.is_(None), Appointment.created_at < created_before),
        )
        stmt = select(Appointment).where(
            Appointment.status == _S.PENDING.value,
            Appointment.payment_status != PaymentStatus.PAID.value,
            lapsed,
        )
        return await self._fetch_many(stmt)

    async def _fetch_many(self, stmt: Any) -> list[AppointmentRecord]:
        try:
            async with self._session_factory() as db:
                rows = (await db.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Appointment query failed")
            raise PersistenceError() from exc
        return [AppointmentRecord.model_validate(row) for row in rows]

    # ── Writes ───────────────────────────────────────────────────────

    async def create(self, new: NewAppointment) -> AppointmentRecord:
        """Insert a pending, unpaid appointment."""
        appointment = Appointment(
            patient_id=new.patient_id,
            professional_id=new.professional_id,
            tenant_id=new.tenant_id,
            scheduled_date=new.scheduled_date,
            scheduled_time=new.scheduled_time,
            timezone=new.timezone,
            amount=new.amount,
            coupon_id=new.coupon_id,
            status=_S.PENDING.value,
            payment_status=PaymentStatus.UNPAID.value,
            version=1,
        )
        try:
            async with self._session_factory() as db:
                db.add(appointment)
                await db.commit()
                await db.refresh(appointment)
        except SQLAlchemyError as exc:
            logger.exception("Failed to create appointment for patient %s", new.patient_id)
            raise PersistenceError() from exc

        logger.info(
            "Appointment created: id=%s professional=%s at=%s %s amount=%d",
            appointment.id,
            new.professional_id,
            new.scheduled_date,
            new.scheduled_time,
            new.amount,
        )
        return AppointmentRecord.model_validate(appointment)

    async def attach_gateway_reference(
        self,
        current: AppointmentRecord,
        reference: str,
        payment_due_at: datetime | None = None,
    ) -> AppointmentRecord:
        """Record the booking payment preference; payment is now pending."""
        return await self._compare_and_set(
            current,
            gateway_reference=reference,
            payment_status=PaymentStatus.PENDING.value,
            payment_due_at=payment_due_at,
        )

    async def mark_confirmed(
        self,
        current: AppointmentRecord,
        payment_status: PaymentStatus = PaymentStatus.PAID,
        payment_id: str | None = None,
    ) -> AppointmentRecord:
        """pending → confirmed, or settle a held reschedule.

        ``payment_id`` is the gateway payment that settled it: the booking
        payment for a pending row, the difference payment for a held one.
        """
        self._require(current, {_S.PENDING, _S.PENDING_RESCHEDULE_PAYMENT})
        check_transition(current, _S.CONFIRMED)
        values: dict[str, Any] = {
            "status": _S.CONFIRMED.value,
            "payment_status": payment_status.value,
            "payment_due_at": None,
            **_CLEARED_HOLD,
        }
        if payment_id is not None:
            settled = "gateway_payment_id" if current.status is _S.PENDING else "supplement_payment_id"
            values[settled] = payment_id
        return await self._compare_and_set(current, **values)

    async def mark_cancelled(
        self,
        current: AppointmentRecord,
        reason: str | None = None,
        payment_status: PaymentStatus | None = None,
    ) -> AppointmentRecord:
        """Cancel in place; the row is kept for refund traceability."""
        check_transition(current, _S.CANCELLED)
        values: dict[str, Any] = {
            "status": _S.CANCELLED.value,
            "cancelled_at": func.now(),
            "cancel_reason": reason,
            **_CLEARED_HOLD,
        }
        if payment_status is not None:
            values["payment_status"] = payment_status.value
        return await self._compare_and_set(current, **values)

    async def set_payment_status(self, current: AppointmentRecord, payment_status: PaymentStatus) -> AppointmentRecord:
        return await self._compare_and_set(current, payment_status=payment_status.value)

    async def update_for_reschedule(self, current: AppointmentRecord, change: RescheduleChange) -> AppointmentRecord:
        """Move the appointment to its new slot and price in one write.

        An upgrade to pending_reschedule_payment snapshots the current slot so
        an unpaid hold can be reverted.
        """
        self._require(current, {_S.PENDING, _S.CONFIRMED})
        check_transition(current, change.status)

        values: dict[str, Any] = {
            "professional_id": change.professional_id,
            "scheduled_date": change.scheduled_date,
            "scheduled_time": change.scheduled_time,
            "amount": change.amount,
            "status": change.status.value,
            "payment_status": change.payment_status.value,
            "gateway_reference": change.gateway_reference,
            "supplement_reference": change.supplement_reference,
            "payment_due_at": change.payment_due_at,
        }
        if change.status is _S.PENDING_RESCHEDULE_PAYMENT:
            values.update(
                hold_expires_at=change.hold_expires_at,
                previous_professional_id=current.professional_id,
                previous_date=current.scheduled_date,
                previous_time=current.scheduled_time,
                previous_amount=current.amount,
                previous_status=current.status.value,
            )
        else:
            values.update(_CLEARED_HOLD)

        return await self._compare_and_set(current, **values)

    async def revert_reschedule_hold(self, current: AppointmentRecord) -> AppointmentRecord:
        """Put a held reschedule back on its previous slot, price and status."""
        self._require(current, {_S.PENDING_RESCHEDULE_PAYMENT})
        if current.previous_professional_id is None or current.previous_status is None:
            raise InvalidTransition(appointment_id=str(current.id), reason="missing reschedule snapshot")

        return await self._compare_and_set(
            current,
            professional_id=current.previous_professional_id,
            scheduled_date=current.previous_date,
            scheduled_time=current.previous_time,
            amount=current.previous_amount,
            status=current.previous_status.value,
            supplement_reference=None,
            **_CLEARED_HOLD,
        )

    # ── Internals ────────────────────────────────────────────────────

    @staticmethod
    def _require(current: AppointmentRecord, allowed_from: Iterable[AppointmentStatus]) -> None:
        if current.status not in set(allowed_from):
            raise InvalidTransition(appointment_id=str(current.id), current=current.status.value)

    async def _compare_and_set(self, current: AppointmentRecord, **values: Any) -> AppointmentRecord:
        stmt = (
            update(Appointment)
            .where(Appointment.id == current.id, Appointment.version == current.version)
            .values(**values, version=Appointment.version + 1, updated_at=func.now())
            .returning(*Appointment.__table__.columns)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as db:
                row = (await db.execute(stmt)).mappings().one_or_none()
                if row is None:
                    await db.rollback()
                    logger.warning(
                        "Lost update on appointment %s (seen version %d)",
                        current.id,
                        current.version,
                    )
                    raise ConcurrencyConflict(appointment_id=str(current.id), version=current.version)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to update appointment %s", current.id)
            raise PersistenceError(appointment_id=str(current.id)) from exc

        return AppointmentRecord.model_validate(dict(row))
