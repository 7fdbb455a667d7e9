"""Typed results of payment gateway calls.

Each lookup returns a closed union so call sites handle "found" and
"not found" explicitly instead of probing optional fields.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from consulta.models.enums import GatewayPaymentStatus, PaymentKind


class PaymentIntentRequest(BaseModel):
    """What a payment intent is for. Amounts in minor units."""

    model_config = ConfigDict(frozen=True)

    appointment_id: uuid.UUID
    kind: PaymentKind
    title: str
    description: str = ""
    # distinguishes retries of the same logical charge at the gateway
    idempotency_key: str
    expires_in_minutes: int | None = None


class PaymentIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    intent_id: str
    payment_url: str


class PaymentFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    found: Literal[True] = True
    payment_id: str
    status: GatewayPaymentStatus
    transaction_amount: int
    transaction_amount_refunded: int = 0
    external_reference: str | None = None
    kind: PaymentKind | None = None

    @property
    def approved(self) -> bool:
        return self.status is GatewayPaymentStatus.APPROVED

    @property
    def refundable(self) -> int:
        return max(self.transaction_amount - self.transaction_amount_refunded, 0)


class PaymentNotFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    found: Literal[False] = False
    reference: str


PaymentLookup = PaymentFound | PaymentNotFound


class RefundResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    refund_id: str
    payment_id: str
    amount: int = Field(ge=0)


class NotificationOutcome(str, Enum):
    """What a payment notification did to its appointment."""

    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    HOLD_REVERTED = "hold_reverted"
    PAYMENT_PENDING = "payment_pending"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
