"""Refund helpers shared by cancellation, reschedule and webhook compensation.

Refunds never block the state change that triggered them: a gateway
failure is logged, emitted as payment.refund_failed (which the audit
subscriber persists for manual reconciliation) and reported to the caller
as RefundStatus.FAILED.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from consulta.errors import GatewayError
from consulta.events import emit
from consulta.models.enums import RefundStatus
from consulta.payments.gateway import PaymentGateway
from consulta.schemas.events import EventType, SystemEvent
from consulta.schemas.payments import PaymentFound

logger = logging.getLogger(__name__)


async def refund_payment(
    gateway: PaymentGateway,
    payment_id: str,
    amount: int,
    appointment_id: uuid.UUID,
    source_module: str,
) -> tuple[RefundStatus, int]:
    """Refund ``amount`` of a known payment. Returns (status, refunded amount)."""
    try:
        result = await gateway.refund(payment_id, amount)
    except GatewayError as exc:
        logger.error(
            "Refund failed: appointment=%s payment=%s amount=%d detail=%s",
            appointment_id,
            payment_id,
            amount,
            exc.detail,
        )
        await emit(
            SystemEvent(
                event_type=EventType.REFUND_FAILED,
                appointment_id=appointment_id,
                actor_role="system",
                data={"payment_id": payment_id, "amount": amount, "detail": exc.detail},
                source_module=source_module,
            )
        )
        return RefundStatus.FAILED, 0

    await emit(
        SystemEvent(
            event_type=EventType.REFUND_PROCESSED,
            appointment_id=appointment_id,
            actor_role="system",
            data={"payment_id": payment_id, "refund_id": result.refund_id, "amount": result.amount},
            source_module=source_module,
        )
    )
    return RefundStatus.PROCESSED, result.amount


async def refund_by_reference(
    gateway: PaymentGateway,
    reference: str,
    amount_cap: int,
    appointment_id: uuid.UUID,
    source_module: str,
) -> tuple[RefundStatus, int]:
    """Refund the approved payment behind a checkout reference, up to ``amount_cap``.

    Only the part not already refunded counts. NOT_NEEDED when nothing
    refundable was paid against the reference.
    """
    try:
        lookup = await gateway.find_payment_by_reference(reference)
    except GatewayError as exc:
        logger.error("Payment lookup failed: appointment=%s reference=%s detail=%s", appointment_id, reference, exc.detail)
        await emit(
            SystemEvent(
                event_type=EventType.REFUND_FAILED,
                appointment_id=appointment_id,
                actor_role="system",
                data={"reference": reference, "amount": amount_cap, "detail": exc.detail},
                source_module=source_module,
            )
        )
        return RefundStatus.FAILED, 0

    if not isinstance(lookup, PaymentFound) or not lookup.approved:
        return RefundStatus.NOT_NEEDED, 0

    amount = min(lookup.refundable, amount_cap)
    if amount <= 0:
        return RefundStatus.NOT_NEEDED, 0
    return await refund_payment(gateway, lookup.payment_id, amount, appointment_id, source_module)


async def refund_references(
    gateway: PaymentGateway,
    references: Iterable[str | None],
    amount_cap: int,
    appointment_id: uuid.UUID,
    source_module: str,
) -> tuple[RefundStatus, int]:
    """Refund up to ``amount_cap`` across several checkout references, in order.

    Returns the combined status and the total refunded.
    """
    remaining = amount_cap
    statuses: list[RefundStatus] = []
    for reference in references:
        if not reference:
            continue
        if remaining <= 0:
            break
        status, refunded = await refund_by_reference(gateway, reference, remaining, appointment_id, source_module)
        statuses.append(status)
        remaining -= refunded
    return combine_refund_statuses(statuses), amount_cap - remaining


def combine_refund_statuses(statuses: list[RefundStatus]) -> RefundStatus:
    if RefundStatus.FAILED in statuses:
        return RefundStatus.FAILED
    if RefundStatus.PROCESSED in statuses:
        return RefundStatus.PROCESSED
    return RefundStatus.NOT_NEEDED
