"""
Per-tenant request analytics backed by expiring counters.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from shared.logging import get_logger
from .. import keys
from ..models import ApiAnalytics, EndpointCount, GatewayConfig, HourlyMetric, RequestContext
from ..store import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DAY = 86400
DAILY_TTL = DAY * 7
HOURLY_TTL = DAY
QUOTA_DAILY_TTL = DAY * 2
QUOTA_MONTHLY_TTL = DAY * 32
RECENT_REQUESTS_TTL = 60
TOP_ENDPOINTS = 10

# (label, upper bound in ms); the last bucket is open-ended
RESPONSE_TIME_BUCKETS: Tuple[Tuple[str, Optional[int]], ...] = (
    ("0-100ms", 100),
    ("100-500ms", 500),
    ("500ms-1s", 1000),
    ("1s-5s", 5000),
    ("5s+", None),
)


def response_time_bucket(ms: int) -> str:
    for label, upper in RESPONSE_TIME_BUCKETS:
        if upper is None or ms < upper:
            return label
    return RESPONSE_TIME_BUCKETS[-1][0]


def _to_int(value: Optional[str]) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


class AnalyticsRecorder:
    """Writes and aggregates the counters behind the analytics dashboard.

    ``record`` also owns the quota counters and the per-IP recent-request
    counter read by the anomaly detector.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("gateway.analytics")

    async def _gather(self, operation: str, tenant_id: str, *aws) -> list:
        """Run store calls concurrently; failures are logged, not raised."""
        results = await asyncio.gather(*aws, return_exceptions=True)
        failures = [r for r in results if isinstance(r, Exception)]
        if failures:
            self.logger.warning(
                "Analytics counters partially failed",
                operation=operation,
                tenant_id=tenant_id,
                failed=len(failures),
                total=len(results),
                error=str(failures[0]),
            )
            if self.metrics:
                self.metrics.increment_counter("gateway_store_errors_total", component="analytics")
        return results

    async def record(self, context: RequestContext, config: GatewayConfig) -> None:
        """Count an admitted request against analytics and quota counters."""
        if not config.monitoring.analytics_enabled:
            return

        now = self.clock()
        tenant = context.tenant_id
        day, hour, month = keys.utc_day(now), keys.utc_hour(now), keys.utc_month(now)

        results = await self._gather(
            "record",
            tenant,
            self.store.increment(keys.requests_daily(tenant, day), ttl_seconds=DAILY_TTL),
            self.store.increment(keys.requests_hourly(tenant, hour), ttl_seconds=HOURLY_TTL),
            self.store.increment(keys.endpoint_daily(tenant, context.endpoint, day), ttl_seconds=DAILY_TTL),
            self.store.increment(keys.quota_daily(tenant, day), ttl_seconds=QUOTA_DAILY_TTL),
            self.store.increment(keys.quota_monthly(tenant, month), ttl_seconds=QUOTA_MONTHLY_TTL),
            self.store.increment(keys.recent_requests(tenant, context.ip_address), ttl_seconds=RECENT_REQUESTS_TTL),
            self._index(keys.endpoint_index(tenant, day), context.endpoint),
        )

        daily_total = results[0]
        if isinstance(daily_total, int):
            await self._refresh_average(tenant, day, daily_total)

    async def _index(self, key: str, member: str) -> None:
        await self.store.set_add(key, member)
        await self.store.expire(key, DAILY_TTL)

    async def _refresh_average(self, tenant_id: str, day: str, daily_total: int) -> None:
        """Keep the tenant's mean requests per endpoint for today up to date."""
        try:
            endpoints = await self.store.set_size(keys.endpoint_index(tenant_id, day))
            if endpoints:
                await self.store.set_with_expiry(
                    keys.avg_endpoint_usage(tenant_id, day),
                    str(daily_total // endpoints),
                    DAILY_TTL,
                )
        except Exception as exc:
            self.logger.warning("Average endpoint usage not refreshed", tenant_id=tenant_id, error=str(exc))

    async def record_response(self, context: RequestContext) -> None:
        """Count a completed response: status, errors and latency."""
        if context.status_code is None:
            return

        now = self.clock()
        tenant = context.tenant_id
        day = keys.utc_day(now)
        elapsed = max(0, context.response_time_ms or 0)

        calls = [
            self.store.increment(keys.responses_daily(tenant, day), ttl_seconds=DAILY_TTL),
            self.store.increment(keys.status_code_daily(tenant, context.status_code, day), ttl_seconds=DAILY_TTL),
            self._index(keys.status_code_index(tenant, day), str(context.status_code)),
            self.store.increment(
                keys.response_time_bucket(tenant, response_time_bucket(elapsed), day), ttl_seconds=DAILY_TTL
            ),
            self.store.increment(keys.response_time_total(tenant, day), ttl_seconds=DAILY_TTL, amount=elapsed),
        ]
        if context.status_code >= 400:
            calls.append(self.store.increment(keys.errors_daily(tenant, day), ttl_seconds=DAILY_TTL))

        await self._gather("record_response", tenant, *calls)

    async def _sum(self, key_for_day: Callable[[str], str], days: Sequence[str]) -> int:
        values = await self.store.get_many([key_for_day(day) for day in days])
        return sum(_to_int(value) for value in values)

    async def _union(self, key_for_day: Callable[[str], str], days: Sequence[str]) -> List[str]:
        members = await asyncio.gather(*(self.store.set_members(key_for_day(day)) for day in days))
        return sorted({member for group in members for member in group})

    async def get_analytics(self, tenant_id: str, days: int = 7) -> ApiAnalytics:
        days = max(1, days)
        now = self.clock()
        dates = [keys.utc_day(now - DAY * offset) for offset in range(days)]
        today = dates[0]

        try:
            (total_requests, total_errors, total_responses, total_response_ms,
             endpoints, status_codes) = await asyncio.gather(
                self._sum(lambda d: keys.requests_daily(tenant_id, d), dates),
                self._sum(lambda d: keys.errors_daily(tenant_id, d), dates),
                self._sum(lambda d: keys.responses_daily(tenant_id, d), dates),
                self._sum(lambda d: keys.response_time_total(tenant_id, d), dates),
                self._union(lambda d: keys.endpoint_index(tenant_id, d), dates),
                self._union(lambda d: keys.status_code_index(tenant_id, d), dates),
            )

            hours = [f"{today}T{h:02d}" for h in range(24)]
            hourly_counts = await self.store.get_many([keys.requests_hourly(tenant_id, h) for h in hours])

            endpoint_counts = await asyncio.gather(*(
                self._sum(lambda d, e=endpoint: keys.endpoint_daily(tenant_id, e, d), dates)
                for endpoint in endpoints
            ))
            status_counts = await asyncio.gather(*(
                self._sum(lambda d, c=code: keys.status_code_daily(tenant_id, int(c), d), dates)
                for code in status_codes
            ))
            latency_counts = await asyncio.gather(*(
                self._sum(lambda d, b=label: keys.response_time_bucket(tenant_id, b, d), dates)
                for label, _ in RESPONSE_TIME_BUCKETS
            ))
        except Exception as exc:
            self.logger.error("Analytics retrieval failed", tenant_id=tenant_id, error=str(exc))
            return ApiAnalytics()

        top = sorted(zip(endpoints, endpoint_counts), key=lambda item: (-item[1], item[0]))[:TOP_ENDPOINTS]
        distribution: Dict[str, int] = {
            label: count for (label, _), count in zip(RESPONSE_TIME_BUCKETS, latency_counts)
        }

        return ApiAnalytics(
            total_requests=total_requests,
            success_rate=round((total_requests - total_errors) / total_requests * 100, 2) if total_requests else 0.0,
            error_rate=round(total_errors / total_requests * 100, 2) if total_requests else 0.0,
            average_response_time=round(total_response_ms / total_responses, 2) if total_responses else 0.0,
            top_endpoints=[EndpointCount(endpoint=e, count=c) for e, c in top],
            hourly_metrics=[
                HourlyMetric(hour=hour.split("T")[1], requests=_to_int(count))
                for hour, count in zip(hours, hourly_counts)
            ],
            status_codes={code: count for code, count in zip(status_codes, status_counts)},
            response_time_distribution=distribution,
        )
