"""Maintenance jobs, triggered by an external cron through the admin API.

- expire_reschedule_holds: upgraded reschedules whose difference was not
  paid before ``hold_expires_at`` go back to their previous slot.
- cancel_unpaid_bookings: pending bookings whose checkout lapsed unpaid
  (``payment_due_at``, or ``booking_unpaid_ttl_hours`` after creation for
  rows without one) are cancelled with payment_status failed.

Before giving up on a row, the gateway is asked whether a payment covering
the amount due did go through (a lost webhook); if so the row is confirmed
instead. Rows whose
payment state cannot be determined are skipped and retried on the next run.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from consulta.appointments.policy import utcnow
from consulta.appointments.store import AppointmentStore
from consulta.config import BookingSettings
from consulta.errors import BookingError, GatewayError
from consulta.events import emit
from consulta.models.enums import AppointmentStatus, PaymentKind, PaymentStatus
from consulta.payments.gateway import PaymentGateway
from consulta.schemas.booking import AppointmentRecord, MaintenanceReport
from consulta.schemas.events import EventType, SystemEvent
from consulta.schemas.payments import PaymentFound
from consulta.workflows.payment_confirmation import amount_due
from consulta.workflows.retry import retry_on_conflict

logger = logging.getLogger(__name__)

# Row handler: returns the event to emit, or None when the row was left alone
RowHandler = Callable[[AppointmentRecord, datetime], Awaitable[EventType | None]]


class MaintenanceWorkflow:
    """Sweeps for stale holds and unpaid bookings."""

    def __init__(
        self,
        store: AppointmentStore,
        gateway: PaymentGateway,
        config: BookingSettings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._config = config
        self._clock = clock

    async def expire_reschedule_holds(self) -> MaintenanceReport:
        now = self._clock()
        rows = await self._store.find_expired_holds(now)
        return await self._sweep("expire_reschedule_holds", rows, now, self._expire_hold)

    async def cancel_unpaid_bookings(self) -> MaintenanceReport:
        now = self._clock()
        created_before = now - timedelta(hours=self._config.booking_unpaid_ttl_hours)
        rows = await self._store.find_unpaid_pending(now, created_before)
        return await self._sweep("cancel_unpaid_bookings", rows, now, self._cancel_unpaid)

    # ── Per-row handlers ─────────────────────────────────────────────

    async def _expire_hold(self, row: AppointmentRecord, now: datetime) -> EventType | None:
        if row.supplement_reference:
            payment = await self._settling_payment(row, row.supplement_reference, PaymentKind.RESCHEDULE_DIFFERENCE)
            if payment is not None:
                return await self._confirm_late(row, payment)

        async def attempt() -> EventType | None:
            current = await self._store.get(row.id)
            if current is None or current.status is not AppointmentStatus.PENDING_RESCHEDULE_PAYMENT:
                return None
            if current.hold_active(now):
                return None
            await self._store.revert_reschedule_hold(current)
            return EventType.RESCHEDULE_HOLD_EXPIRED

        return await retry_on_conflict(attempt, self._config.booking_max_conflict_retries, row.id, __name__)

    async def _cancel_unpaid(self, row: AppointmentRecord, now: datetime) -> EventType | None:
        if row.gateway_reference:
            payment = await self._settling_payment(row, row.gateway_reference, PaymentKind.BOOKING)
            if payment is not None:
                return await self._confirm_late(row, payment)

        async def attempt() -> EventType | None:
            current = await self._store.get(row.id)
            if current is None or current.status is not AppointmentStatus.PENDING:
                return None
            if current.payment_due_at is not None and current.payment_due_at > now:
                return None
            await self._store.mark_cancelled(current, reason="payment_timeout", payment_status=PaymentStatus.FAILED)
            return EventType.APPOINTMENT_CANCELLED

        return await retry_on_conflict(attempt, self._config.booking_max_conflict_retries, row.id, __name__)

    async def _confirm_late(self, row: AppointmentRecord, payment: PaymentFound) -> EventType | None:
        logger.info("Appointment %s was paid (%s) but never confirmed; confirming", row.id, payment.payment_id)

        async def attempt() -> EventType | None:
            current = await self._store.get(row.id)
            if current is None or current.status is not row.status:
                return None
            # repriced or re-held since the sweep read it
            if (current.gateway_reference, current.supplement_reference, current.amount) != (
                row.gateway_reference,
                row.supplement_reference,
                row.amount,
            ):
                return None
            await self._store.mark_confirmed(current, PaymentStatus.PAID, payment.payment_id)
            return EventType.APPOINTMENT_CONFIRMED

        return await retry_on_conflict(attempt, self._config.booking_max_conflict_retries, row.id, __name__)

    async def _settling_payment(
        self,
        row: AppointmentRecord,
        reference: str,
        kind: PaymentKind,
    ) -> PaymentFound | None:
        """The approved payment behind ``reference`` if it covers what ``row`` owes."""
        lookup = await self._gateway.find_payment_by_reference(reference)
        if not isinstance(lookup, PaymentFound) or not lookup.approved:
            return None
        due = amount_due(row, kind)
        if lookup.transaction_amount < due:
            logger.warning(
                "Payment %s covers %d of %d due on appointment %s; not confirming",
                lookup.payment_id,
                lookup.transaction_amount,
                due,
                row.id,
            )
            return None
        return lookup

    # ── Sweep driver ─────────────────────────────────────────────────

    async def _sweep(
        self,
        job: str,
        rows: list[AppointmentRecord],
        now: datetime,
        handler: RowHandler,
    ) -> MaintenanceReport:
        succeeded: list[uuid.UUID] = []
        failed = 0
        for row in rows:
            try:
                event_type = await handler(row, now)
            except GatewayError as exc:
                failed += 1
                logger.warning("%s: payment check failed for %s, skipping (%s)", job, row.id, exc.detail)
                continue
            except BookingError:
                failed += 1
                logger.exception("%s: failed to process appointment %s", job, row.id)
                continue

            if event_type is None:
                continue
            succeeded.append(row.id)
            await emit(
                SystemEvent(
                    event_type=event_type,
                    appointment_id=row.id,
                    actor_id="system",
                    actor_role="system",
                    data={"job": job},
                    source_module=__name__,
                )
            )

        report = MaintenanceReport(
            total_processed=len(rows),
            succeeded=len(succeeded),
            failed=failed,
            appointment_ids=succeeded,
        )
        logger.info("%s: %d processed, %d succeeded, %d failed", job, len(rows), len(succeeded), failed)
        await emit(
            SystemEvent(
                event_type=EventType.MAINTENANCE_RUN,
                actor_id="system",
                actor_role="system",
                data={"job": job, **report.model_dump(mode="json")},
                source_module=__name__,
            )
        )
        return report
