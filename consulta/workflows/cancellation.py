"""Cancellation workflow.

1. Fetch the appointment fresh.
2. Refuse inside the cutoff window, before touching anything.
3. Persist status = cancelled (version compare-and-set, retried on conflict).
4. Refund whatever was actually paid: the booking payment and, if any,
   the reschedule-difference payment.

The state write comes before the refund so a lost version race can never
issue a second refund. A refund failure is reported, not raised.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from consulta.appointments.policy import enforce_cutoff, utcnow
from consulta.appointments.store import AppointmentStore
from consulta.config import BookingSettings
from consulta.errors import BookingError, NotFound
from consulta.events import emit
from consulta.models.enums import PaymentStatus, RefundStatus
from consulta.payments.gateway import PaymentGateway
from consulta.schemas.booking import AppointmentRecord, CancellationResult
from consulta.schemas.events import EventType, SystemEvent
from consulta.workflows.refunds import refund_references
from consulta.workflows.retry import retry_on_conflict

logger = logging.getLogger(__name__)


class CancellationWorkflow:
    """Cancels appointments and drives their refunds."""

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

    async def cancel(
        self,
        appointment_id: uuid.UUID,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> CancellationResult:
        """Cancel an appointment at least ``booking_cutoff_hours`` ahead.

        Raises:
            NotFound, CutoffViolation, InvalidTransition, ConcurrencyConflict,
            PersistenceError. Never GatewayError.
        """

        async def attempt() -> tuple[AppointmentRecord, AppointmentRecord]:
            current = await self._store.get(appointment_id)
            if current is None:
                raise NotFound(appointment_id=str(appointment_id))
            enforce_cutoff(current, self._clock(), self._config.booking_cutoff_hours, "Cancelamento")
            return current, await self._store.mark_cancelled(current, reason=reason)

        before, cancelled = await retry_on_conflict(
            attempt, self._config.booking_max_conflict_retries, appointment_id, __name__
        )
        logger.info("Appointment %s cancelled (was %s)", appointment_id, before.status.value)

        refund_status, refunded = await self._refund(before)
        if refund_status is RefundStatus.PROCESSED:
            cancelled = await self._record_refund(appointment_id, cancelled)

        await emit(
            SystemEvent(
                event_type=EventType.APPOINTMENT_CANCELLED,
                appointment_id=appointment_id,
                actor_id=actor_id,
                actor_role="patient" if actor_id else "system",
                data={
                    "reason": reason,
                    "previous_status": before.status.value,
                    "refund_status": refund_status.value,
                    "refunded_amount": refunded,
                },
                source_module=__name__,
            )
        )
        return CancellationResult(success=True, refund_status=refund_status, appointment=cancelled)

    async def _refund(self, before: AppointmentRecord) -> tuple[RefundStatus, int]:
        """Refund the booking and difference payments, never more than the appointment amount."""
        if before.amount <= 0:
            return RefundStatus.NOT_NEEDED, 0
        return await refund_references(
            self._gateway,
            (before.gateway_reference, before.supplement_reference),
            before.amount,
            before.id,
            __name__,
        )

    async def _record_refund(self, appointment_id: uuid.UUID, cancelled: AppointmentRecord) -> AppointmentRecord:
        """Mark the cancelled row refunded. The cancellation itself already stands."""

        async def attempt() -> AppointmentRecord:
            current = await self._store.get(appointment_id)
            if current is None:
                raise NotFound(appointment_id=str(appointment_id))
            return await self._store.set_payment_status(current, PaymentStatus.REFUNDED)

        try:
            return await retry_on_conflict(
                attempt, self._config.booking_max_conflict_retries, appointment_id, __name__
            )
        except BookingError:
            logger.exception("Refund issued but payment_status not updated for appointment %s", appointment_id)
            return cancelled
