"""
Test helpers shared by the unit and integration suites.
"""

from datetime import datetime, timezone

from shared.metrics import MetricsCollector
from service_gateway.app.models import RequestContext

# Tuesday 2024-03-12 14:00:00 UTC
BUSINESS_HOURS_TS = 1710252000.0
# Tuesday 2024-03-12 03:00:00 UTC
NIGHT_TS = 1710212400.0

BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64)"


class FakeClock:
    """Settable epoch clock."""

    def __init__(self, now: float = BUSINESS_HOURS_TS):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_context(tenant_id="acme", endpoint="/api/leads", method="GET", ip_address="10.0.0.1",
                 user_agent=BROWSER_UA, ts=BUSINESS_HOURS_TS, **kwargs):
    return RequestContext(
        tenant_id=tenant_id,
        endpoint=endpoint,
        method=method,
        ip_address=ip_address,
        user_agent=user_agent,
        timestamp=datetime.fromtimestamp(ts, tz=timezone.utc),
        **kwargs,
    )


def metric_value(metrics: MetricsCollector, name: str, **labels) -> float:
    value = metrics.registry.get_sample_value(name, labels)
    return value or 0.0
