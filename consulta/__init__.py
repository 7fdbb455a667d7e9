"""Consulta: booking lifecycle, settlement and coupon pricing core."""

__version__ = "0.1.0"
