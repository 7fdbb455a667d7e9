"""Booking price computation."""

from consulta.pricing.engine import compute_discount, compute_price

__all__ = [
    "compute_discount",
    "compute_price",
]
