"""
Fixed-window rate limiter for the gateway.
"""

import time
from typing import Callable, Dict, Optional, TYPE_CHECKING

from shared.errors import StoreError
from shared.logging import get_logger
from .. import keys
from ..models import GatewayConfig, RateLimitResult
from ..store import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class FixedWindowRateLimiter:
    """Counts requests per tenant and endpoint in epoch-aligned windows.

    Bucket ``floor(now / window)`` is counted with a single atomic increment
    whose TTL is set when the bucket is created, so concurrent requests can
    never both observe the same count. Windows are fixed rather than sliding:
    up to ``2 * max_requests`` can pass within a short span around a boundary.
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
        self.logger = get_logger("gateway.rate_limiter")

    async def check(self, tenant_id: str, endpoint: str, config: GatewayConfig) -> RateLimitResult:
        """Count this request and report whether it fits the current window."""
        now = self.clock()
        window = config.rate_limit.window_seconds
        limit = config.rate_limit.max_requests
        bucket = int(now // window)
        reset_time = (bucket + 1) * window

        try:
            count = await self.store.increment(keys.rate_limit(tenant_id, endpoint, bucket), ttl_seconds=window)
        except StoreError as exc:
            if self.metrics:
                self.metrics.increment_counter("gateway_store_errors_total", component="rate_limiter")
            if config.fail_closed:
                self.logger.error("Rate limit store unavailable, rejecting", tenant_id=tenant_id, error=str(exc))
                return RateLimitResult(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    reset_time=reset_time,
                    retry_after=window,
                )
            self.logger.error("Rate limit store unavailable, allowing request", tenant_id=tenant_id, error=str(exc))
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit,
                reset_time=int(now + window),
            )

        if count > limit:
            self.logger.warning(
                "Rate limit exceeded",
                tenant_id=tenant_id,
                endpoint=endpoint,
                current_count=count,
                limit=limit,
            )
            if self.metrics:
                self.metrics.increment_counter("gateway_rate_limit_hits_total", tenant_id=tenant_id)
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_time=reset_time,
                retry_after=window,
            )

        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - count),
            reset_time=reset_time,
        )

    @staticmethod
    def headers(result: RateLimitResult) -> Dict[str, str]:
        """Standard rate limit headers for a check result."""
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(max(0, result.remaining)),
            "X-RateLimit-Reset": str(result.reset_time),
        }
        if not result.allowed:
            headers["Retry-After"] = str(result.retry_after or 0)
        return headers
