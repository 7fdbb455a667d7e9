"""Tests for the pricing engine.

Covers:
- No coupon: final equals base
- Percentage coupons, half-up rounding, max_discount_amount cap
- Fixed coupons capped at the base amount (never negative)
- CouponTerms validation (percentage range, positive value)
- Negative base rejected
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from consulta.models.enums import DiscountType
from consulta.pricing import compute_discount, compute_price
from consulta.schemas.pricing import CouponTerms


def _pct(value: str, cap: int | None = None) -> CouponTerms:
    return CouponTerms(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal(value), max_discount_amount=cap)


def _fixed(value: str) -> CouponTerms:
    return CouponTerms(discount_type=DiscountType.FIXED_AMOUNT, discount_value=Decimal(value))


class TestNoCoupon:
    def test_final_equals_original(self):
        price = compute_price(10000)
        assert (price.original, price.discount, price.final) == (10000, 0, 10000)

    def test_free_session(self):
        price = compute_price(0)
        assert price.final == 0


class TestPercentage:
    def test_twenty_percent(self):
        price = compute_price(10000, _pct("20"))
        assert price.discount == 2000
        assert price.final == 8000

    def test_rounds_half_up(self):
        # 15% of 9999 = 1499.85 → 1500
        assert compute_discount(9999, _pct("15")) == 1500
        # 10% of 45 = 4.5 → 5
        assert compute_discount(45, _pct("10")) == 5

    def test_cap_applies(self):
        price = compute_price(20000, _pct("50", cap=3000))
        assert price.discount == 3000
        assert price.final == 17000

    def test_cap_above_discount_is_noop(self):
        assert compute_discount(10000, _pct("10", cap=5000)) == 1000

    def test_hundred_percent_is_free(self):
        price = compute_price(15000, _pct("100"))
        assert price.final == 0


class TestFixed:
    def test_fixed_amount(self):
        price = compute_price(10000, _fixed("2500"))
        assert price.discount == 2500
        assert price.final == 7500

    def test_fixed_larger_than_price_clamps(self):
        price = compute_price(3000, _fixed("5000"))
        assert price.discount == 3000
        assert price.final == 0


class TestValidation:
    def test_negative_base_rejected(self):
        with pytest.raises(ValueError, match="base_amount"):
            compute_price(-1)

    def test_percentage_over_hundred_rejected(self):
        with pytest.raises(ValidationError):
            _pct("100.01")

    def test_zero_value_rejected(self):
        with pytest.raises(ValidationError):
            _fixed("0")

    def test_final_never_negative_for_any_terms(self):
        for base in (0, 1, 99, 10000):
            for terms in (_pct("33.33"), _pct("100", cap=1), _fixed("1"), _fixed("99999")):
                price = compute_price(base, terms)
                assert 0 <= price.final <= base
                assert price.original - price.discount == price.final
