"""Audit trail and abuse protection."""

from consulta.security.audit import make_audit_subscriber
from consulta.security.rate_limiter import RateLimiter

__all__ = ["RateLimiter", "make_audit_subscriber"]
