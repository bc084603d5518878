"""
Request analytics: counter writes per request/response and dashboard aggregation.
"""

from .recorder import AnalyticsRecorder, response_time_bucket

__all__ = ["AnalyticsRecorder", "response_time_bucket"]
