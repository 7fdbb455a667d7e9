"""Pricing engine: payable amount for a booking, with an optional coupon.

Pure Python, Decimal arithmetic, integer minor units in and out. The same
function prices a fresh booking and a rescheduled slot so both paths share
one rounding rule (half-up to the unit).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from consulta.models.enums import DiscountType
from consulta.schemas.pricing import CouponTerms, PricedAmount


def _to_units(value: Decimal) -> int:
    """Round to a whole minor unit, half-up."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_discount(base_amount: int, terms: CouponTerms) -> int:
    """Discount granted by ``terms`` on ``base_amount``, never more than the amount itself."""
    if terms.discount_type is DiscountType.PERCENTAGE:
        discount = _to_units(Decimal(base_amount) * terms.discount_value / 100)
        if terms.max_discount_amount is not None:
            discount = min(discount, terms.max_discount_amount)
    else:
        discount = _to_units(terms.discount_value)

    return max(0, min(discount, base_amount))


def compute_price(base_amount: int, coupon: CouponTerms | None = None) -> PricedAmount:
    """Price a booking.

    Args:
        base_amount: Professional's session price in minor units.
        coupon: Discount terms of an already-validated coupon, if any.

    Returns:
        PricedAmount with ``final = original - discount`` and ``final >= 0``.

    Raises:
        ValueError: if ``base_amount`` is negative.
    """
    if base_amount < 0:
        msg = f"base_amount must be >= 0, got {base_amount}"
        raise ValueError(msg)

    discount = compute_discount(base_amount, coupon) if coupon is not None else 0
    return PricedAmount(original=base_amount, discount=discount, final=base_amount - discount)
