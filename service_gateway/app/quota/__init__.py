"""
Quota accounting: daily and monthly usage checks per tenant.
"""

from .tracker import QuotaTracker

__all__ = ["QuotaTracker"]
