"""Audit trail and inbound throttling."""

from src.security.audit import audit_on_event
from src.security.rate_limiter import RateDecision, RateLimiter

__all__ = ["RateDecision", "RateLimiter", "audit_on_event"]
