"""Coupon validation results.

A validation returns exactly one of CouponAccepted / CouponRejected; the
rejection reason is a closed set the front-end maps to its own copy.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict

from consulta.models.enums import CouponScope, DiscountType
from consulta.schemas.pricing import CouponTerms, PricedAmount


class RejectionReason(str, Enum):
    """Why a coupon was refused. Checks run in this order; the first failure wins."""

    NOT_FOUND = "not_found"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    OUT_OF_SCOPE = "out_of_scope"
    BELOW_MINIMUM = "below_minimum"
    USAGE_EXCEEDED = "usage_exceeded"


REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.NOT_FOUND: "Cupom inválido ou inativo",
    RejectionReason.NOT_YET_VALID: "Este cupom ainda não está válido",
    RejectionReason.EXPIRED: "Este cupom expirou",
    RejectionReason.OUT_OF_SCOPE: "Este cupom não é válido para este profissional",
    RejectionReason.BELOW_MINIMUM: "Valor mínimo para uso do cupom não atingido",
    RejectionReason.USAGE_EXCEEDED: "Limite de uso do cupom atingido",
}


class CouponRecord(BaseModel):
    """Detached snapshot of a coupon row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    institution_id: uuid.UUID | None = None
    code: str
    name: str
    professional_scope: CouponScope
    professional_scope_ids: list[uuid.UUID] | None = None
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: int | None = None
    minimum_purchase_amount: int = 0
    maximum_uses: int | None = None
    uses_per_user: int = 1
    current_usage_count: int = 0
    valid_from: datetime
    valid_until: datetime | None = None
    is_active: bool

    @property
    def terms(self) -> CouponTerms:
        return CouponTerms(
            discount_type=self.discount_type,
            discount_value=self.discount_value,
            max_discount_amount=self.max_discount_amount,
        )


class CouponAccepted(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: Literal[True] = True
    coupon_id: uuid.UUID
    code: str
    terms: CouponTerms
    price: PricedAmount


class CouponRejected(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: Literal[False] = False
    reason: RejectionReason
    message: str

    @classmethod
    def because(cls, reason: RejectionReason) -> CouponRejected:
        return cls(reason=reason, message=REJECTION_MESSAGES[reason])


CouponDecision = CouponAccepted | CouponRejected
