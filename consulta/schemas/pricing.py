"""Pydantic schemas for price computation.

Pure data classes: no business logic. All amounts are integer minor currency units.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from consulta.models.enums import DiscountType


class CouponTerms(BaseModel):
    """The discount part of a coupon, detached from its eligibility rules."""

    model_config = ConfigDict(frozen=True)

    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    max_discount_amount: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def check_percentage_range(self) -> CouponTerms:
        if self.discount_type is DiscountType.PERCENTAGE and self.discount_value > 100:
            msg = f"Percentage discount must be in (0, 100], got {self.discount_value}"
            raise ValueError(msg)
        return self


class PricedAmount(BaseModel):
    """Result of pricing one booking."""

    model_config = ConfigDict(frozen=True)

    original: int = Field(ge=0)
    discount: int = Field(ge=0)
    final: int = Field(ge=0)
