"""PaymentGateway interface consumed by the booking workflows.

Implementations raise ``consulta.errors.GatewayError`` for every transport,
timeout or provider failure. There is no internal retry.
"""

from __future__ import annotations

from typing import Protocol

from consulta.schemas.payments import (
    PaymentIntent,
    PaymentIntentRequest,
    PaymentLookup,
    RefundResult,
)


class PaymentGateway(Protocol):
    async def create_payment_intent(self, amount: int, request: PaymentIntentRequest) -> PaymentIntent:
        """Create a checkout for exactly ``amount`` minor units."""
        ...

    async def find_payment_by_reference(self, reference: str) -> PaymentLookup:
        """Most recent payment made against a checkout reference."""
        ...

    async def get_payment(self, payment_id: str) -> PaymentLookup:
        ...

    async def refund(self, payment_id: str, amount: int) -> RefundResult:
        """Full or partial refund of ``amount`` minor units."""
        ...
