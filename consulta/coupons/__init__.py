"""Coupon eligibility and the redemption ledger."""

from consulta.coupons.validator import CouponValidator, in_scope

__all__ = ["CouponValidator", "in_scope"]
