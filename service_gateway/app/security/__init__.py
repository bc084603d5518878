"""
Security checks: anomaly scoring, IP whitelisting and the audit sink.
"""

from .anomaly import AnomalyDetector
from .events import SecurityEventSink
from .ip_whitelist import IPWhitelist

__all__ = ["AnomalyDetector", "SecurityEventSink", "IPWhitelist"]
