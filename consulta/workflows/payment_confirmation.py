"""Payment notification handling (Mercado Pago webhook → appointment state).

    approved   booking payment         pending → confirmed
               difference payment      pending_reschedule_payment → confirmed
               less than what is due   payment refunded, row keeps waiting
               more than what is due   confirmed, the excess refunded
               appointment no longer waiting for it (cancelled, hold
               reverted, settled by another payment)
                                       payment refunded in full
    rejected / cancelled
               booking payment         pending → cancelled, payment failed
               difference payment      hold reverted to the previous slot
    pending / in_process / authorized  payment_status = pending

Notifications are at-least-once. The row stores the gateway payment id
that settled it, so a replay of that same payment is recognized and
ignored.
"""

from __future__ import annotations

import logging
import uuid

from consulta.appointments.store import AppointmentStore
from consulta.config import BookingSettings
from consulta.errors import BookingError, NotFound
from consulta.events import emit
from consulta.models.enums import AppointmentStatus, GatewayPaymentStatus, PaymentKind, PaymentStatus, RefundStatus
from consulta.payments.gateway import PaymentGateway
from consulta.schemas.booking import AppointmentRecord
from consulta.schemas.events import EventType, SystemEvent
from consulta.schemas.payments import NotificationOutcome, PaymentFound
from consulta.workflows.refunds import refund_payment
from consulta.workflows.retry import retry_on_conflict

logger = logging.getLogger(__name__)

_S = AppointmentStatus
_G = GatewayPaymentStatus

_IN_FLIGHT = (_G.PENDING, _G.IN_PROCESS, _G.AUTHORIZED)
_FAILED = (_G.REJECTED, _G.CANCELLED)

_EVENT_FOR_OUTCOME = {
    NotificationOutcome.CONFIRMED: EventType.APPOINTMENT_CONFIRMED,
    NotificationOutcome.CANCELLED: EventType.APPOINTMENT_CANCELLED,
    NotificationOutcome.HOLD_REVERTED: EventType.RESCHEDULE_HOLD_EXPIRED,
    NotificationOutcome.PAYMENT_PENDING: EventType.PAYMENT_STATUS_CHANGED,
}


def amount_due(current: AppointmentRecord, kind: PaymentKind) -> int:
    """What a payment of ``kind`` must cover to settle ``current`` as it stands."""
    if kind is PaymentKind.RESCHEDULE_DIFFERENCE:
        return max(current.amount - (current.previous_amount or 0), 0)
    return current.amount


class PaymentConfirmationWorkflow:
    """Applies gateway payment notifications to appointments."""

    def __init__(self, store: AppointmentStore, gateway: PaymentGateway, config: BookingSettings) -> None:
        self._store = store
        self._gateway = gateway
        self._config = config

    async def handle_notification(self, payment_id: str) -> NotificationOutcome:
        """Fetch the payment from the gateway and apply it.

        The notification body is never trusted; only the gateway's own view
        of the payment is.

        Raises:
            GatewayError: the payment could not be fetched (the gateway
                will redeliver).
        """
        payment = await self._gateway.get_payment(payment_id)
        if not isinstance(payment, PaymentFound):
            logger.warning("Notification for unknown payment %s", payment_id)
            return NotificationOutcome.IGNORED

        try:
            appointment_id = uuid.UUID(payment.external_reference or "")
        except ValueError:
            logger.warning("Payment %s has no appointment reference (%r)", payment_id, payment.external_reference)
            return NotificationOutcome.IGNORED

        kind = payment.kind or PaymentKind.BOOKING

        async def attempt() -> tuple[NotificationOutcome, AppointmentRecord | None, int]:
            current = await self._store.get(appointment_id)
            if current is None:
                return NotificationOutcome.IGNORED, None, 0
            outcome, record = await self._apply(current, payment, kind)
            excess = 0
            if outcome is NotificationOutcome.CONFIRMED:
                excess = payment.transaction_amount - amount_due(current, kind)
            return outcome, record, excess

        outcome, record, excess = await retry_on_conflict(
            attempt, self._config.booking_max_conflict_retries, appointment_id, __name__
        )

        if outcome is NotificationOutcome.COMPENSATED:
            outcome = await self._compensate(appointment_id, payment)
        elif excess > 0 and record is not None:
            record = await self._refund_excess(record, payment, excess)

        logger.info(
            "Payment %s (%s, %s) applied to appointment %s: %s",
            payment_id,
            payment.status.value,
            kind.value,
            appointment_id,
            outcome.value,
        )
        event_type = _EVENT_FOR_OUTCOME.get(outcome)
        if event_type is not None and record is not None:
            await emit(
                SystemEvent(
                    event_type=event_type,
                    appointment_id=appointment_id,
                    actor_id=payment.payment_id,
                    actor_role="gateway",
                    data={
                        "payment_id": payment.payment_id,
                        "payment_status": payment.status.value,
                        "kind": kind.value,
                        "status": record.status.value,
                    },
                    source_module=__name__,
                )
            )
        return outcome

    async def _apply(
        self,
        current: AppointmentRecord,
        payment: PaymentFound,
        kind: PaymentKind,
    ) -> tuple[NotificationOutcome, AppointmentRecord | None]:
        awaiting = (kind is PaymentKind.BOOKING and current.status is _S.PENDING) or (
            kind is PaymentKind.RESCHEDULE_DIFFERENCE and current.status is _S.PENDING_RESCHEDULE_PAYMENT
        )

        if payment.approved:
            if self._already_applied(current, payment, kind):
                return NotificationOutcome.DUPLICATE, current
            if awaiting:
                due = amount_due(current, kind)
                if payment.transaction_amount < due:
                    logger.warning(
                        "Payment %s covers %d of %d due on appointment %s",
                        payment.payment_id,
                        payment.transaction_amount,
                        due,
                        current.id,
                    )
                    return NotificationOutcome.COMPENSATED, current
                confirmed = await self._store.mark_confirmed(current, PaymentStatus.PAID, payment.payment_id)
                return NotificationOutcome.CONFIRMED, confirmed
            # paid for something that no longer exists
            return NotificationOutcome.COMPENSATED, current

        if payment.status in _FAILED and awaiting:
            if kind is PaymentKind.BOOKING:
                cancelled = await self._store.mark_cancelled(
                    current, reason="payment_rejected", payment_status=PaymentStatus.FAILED
                )
                return NotificationOutcome.CANCELLED, cancelled
            return NotificationOutcome.HOLD_REVERTED, await self._store.revert_reschedule_hold(current)

        if payment.status in _IN_FLIGHT and kind is PaymentKind.BOOKING and current.status is _S.PENDING:
            if current.payment_status is PaymentStatus.PENDING:
                return NotificationOutcome.DUPLICATE, current
            updated = await self._store.set_payment_status(current, PaymentStatus.PENDING)
            return NotificationOutcome.PAYMENT_PENDING, updated

        return NotificationOutcome.IGNORED, current

    @staticmethod
    def _already_applied(current: AppointmentRecord, payment: PaymentFound, kind: PaymentKind) -> bool:
        if kind is PaymentKind.RESCHEDULE_DIFFERENCE:
            settled_by = current.supplement_payment_id
        else:
            settled_by = current.gateway_payment_id
        if settled_by is not None:
            return settled_by == payment.payment_id
        # rows settled before payment ids were recorded
        if kind is PaymentKind.BOOKING:
            return current.gateway_reference is not None and current.status in (
                _S.CONFIRMED,
                _S.COMPLETED,
                _S.PENDING_RESCHEDULE_PAYMENT,
            )
        # a reverted hold drops its supplement reference; a settled one keeps it
        return current.supplement_reference is not None and current.status in (_S.CONFIRMED, _S.COMPLETED)

    async def _refund_excess(
        self,
        confirmed: AppointmentRecord,
        payment: PaymentFound,
        excess: int,
    ) -> AppointmentRecord:
        """Give back what a confirming payment paid above the amount due."""
        logger.warning("Payment %s overpaid appointment %s by %d; refunding", payment.payment_id, confirmed.id, excess)
        status, _ = await refund_payment(self._gateway, payment.payment_id, excess, confirmed.id, __name__)
        if status is not RefundStatus.PROCESSED:
            return confirmed

        async def attempt() -> AppointmentRecord:
            current = await self._store.get(confirmed.id)
            if current is None:
                raise NotFound(appointment_id=str(confirmed.id))
            return await self._store.set_payment_status(current, PaymentStatus.PARTIALLY_REFUNDED)

        try:
            return await retry_on_conflict(attempt, self._config.booking_max_conflict_retries, confirmed.id, __name__)
        except BookingError:
            logger.exception("Excess refunded but payment_status not updated for appointment %s", confirmed.id)
            return confirmed

    async def _compensate(self, appointment_id: uuid.UUID, payment: PaymentFound) -> NotificationOutcome:
        """Refund an approved payment the appointment does not owe.

        Only what the gateway has not already refunded is sent back.
        """
        if payment.refundable <= 0:
            return NotificationOutcome.IGNORED
        logger.warning(
            "Approved payment %s is not owed by appointment %s; refunding %d",
            payment.payment_id,
            appointment_id,
            payment.refundable,
        )
        status, _ = await refund_payment(
            self._gateway, payment.payment_id, payment.refundable, appointment_id, __name__
        )
        if status is RefundStatus.PROCESSED:
            return NotificationOutcome.COMPENSATED
        return NotificationOutcome.COMPENSATION_FAILED
