"""
Daily and monthly request quotas.
"""

import asyncio
import time
from typing import Callable, Optional, TYPE_CHECKING

from shared.errors import StoreError
from shared.logging import get_logger
from .. import keys
from ..models import GatewayConfig, QuotaUsage
from ..store import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


def _as_int(value: Optional[str]) -> int:
    return int(value) if value else 0


class QuotaTracker:
    """Read-only view of a tenant's quota counters.

    Counters are written by ``AnalyticsRecorder.record`` only; checking a quota
    never changes it.
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
        self.logger = get_logger("gateway.quota")

    async def _read(self, tenant_id: str) -> tuple:
        now = self.clock()
        daily, monthly = await asyncio.gather(
            self.store.get(keys.quota_daily(tenant_id, keys.utc_day(now))),
            self.store.get(keys.quota_monthly(tenant_id, keys.utc_month(now))),
        )
        return _as_int(daily), _as_int(monthly)

    async def check_quotas(self, tenant_id: str, config: GatewayConfig) -> bool:
        """True while both daily and monthly usage are under their limits."""
        try:
            daily, monthly = await self._read(tenant_id)
        except (StoreError, ValueError) as exc:
            if self.metrics:
                self.metrics.increment_counter("gateway_store_errors_total", component="quota")
            self.logger.error(
                "Quota check failed",
                tenant_id=tenant_id,
                error=str(exc),
                fail_closed=config.fail_closed,
            )
            return not config.fail_closed

        within = daily < config.quotas.daily_limit and monthly < config.quotas.monthly_limit
        if not within:
            self.logger.warning(
                "Quota exceeded",
                tenant_id=tenant_id,
                daily=daily,
                daily_limit=config.quotas.daily_limit,
                monthly=monthly,
                monthly_limit=config.quotas.monthly_limit,
            )
        return within

    async def usage(self, tenant_id: str, config: GatewayConfig) -> QuotaUsage:
        """Current counters for the operator API; store errors propagate."""
        daily, monthly = await self._read(tenant_id)
        return QuotaUsage(
            daily=daily,
            monthly=monthly,
            daily_limit=config.quotas.daily_limit,
            monthly_limit=config.quotas.monthly_limit,
        )
