"""
Rate limiting package for the Gateway.

Holds the fixed-window limiter that enforces per-tenant, per-endpoint request
budgets and renders the matching ``X-RateLimit-*`` headers.
"""

from .fixed_window import FixedWindowRateLimiter

__all__ = ["FixedWindowRateLimiter"]
