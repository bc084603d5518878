"""
Heuristic anomaly scoring for inbound requests.
"""

import time
from datetime import datetime, tzinfo
from typing import Callable, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .. import keys
from ..models import AnomalyAction, AnomalyPolicy, AnomalyResult, GatewayConfig, RequestContext
from ..store import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


HIGH_FREQUENCY = "High request frequency"
NEW_LOCATION = "New geographic location"
SUSPICIOUS_USER_AGENT = "Suspicious user agent"
UNUSUAL_ENDPOINT = "Unusual endpoint access"
OFF_HOURS = "Off-hours access"

DEFAULT_AVG_ENDPOINT_USAGE = 10
ENDPOINT_USAGE_RATIO = 0.1


def decide(score: int, policy: AnomalyPolicy) -> AnomalyAction:
    """Map a risk score to an action; monotonic in ``score``."""
    if score >= policy.block_threshold:
        return AnomalyAction.BLOCK
    if score >= policy.throttle_threshold:
        return AnomalyAction.THROTTLE
    return AnomalyAction.ALLOW


class AnomalyDetector:
    """Scores a request from five independent, additive heuristics.

    Factors are evaluated in a fixed order (frequency, geography, user agent,
    endpoint, time of day) and each contributes its policy weight once. Any
    failure while scoring yields a clean ``allow`` result.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        clock: Callable[[], float] = time.time,
        tz: Optional[tzinfo] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.clock = clock
        # None means server-local time
        self.tz = tz
        self.metrics = metrics
        self.logger = get_logger("gateway.anomaly")

    async def detect(self, context: RequestContext, config: GatewayConfig) -> AnomalyResult:
        policy = config.anomaly
        score = 0
        factors: List[str] = []

        try:
            if await self._high_frequency(context, config):
                score += policy.frequency_weight
                factors.append(HIGH_FREQUENCY)

            if await self._new_location(context):
                score += policy.geo_weight
                factors.append(NEW_LOCATION)

            if self._suspicious_user_agent(context, policy):
                score += policy.user_agent_weight
                factors.append(SUSPICIOUS_USER_AGENT)

            if await self._unusual_endpoint(context):
                score += policy.endpoint_weight
                factors.append(UNUSUAL_ENDPOINT)

            if self._off_hours(policy):
                score += policy.off_hours_weight
                factors.append(OFF_HOURS)

        except Exception as exc:
            self.logger.error("Anomaly detection failed, allowing request", tenant_id=context.tenant_id, error=str(exc))
            if self.metrics:
                self.metrics.increment_counter("gateway_store_errors_total", component="anomaly")
            return AnomalyResult.clean()

        result = AnomalyResult(
            is_anomaly=score > policy.anomaly_threshold,
            risk_score=score,
            factors=factors,
            action=decide(score, policy),
        )
        if self.metrics:
            self.metrics.observe_histogram("gateway_anomaly_score", score)
        if result.is_anomaly:
            self.logger.info(
                "Anomalous request",
                tenant_id=context.tenant_id,
                endpoint=context.endpoint,
                risk_score=score,
                factors=factors,
                action=result.action.value,
            )
        return result

    async def _high_frequency(self, context: RequestContext, config: GatewayConfig) -> bool:
        raw = await self.store.get(keys.recent_requests(context.tenant_id, context.ip_address))
        recent = int(raw) if raw else 0
        # per-minute share of the window limit
        return recent > config.rate_limit.max_requests / 60

    async def _new_location(self, context: RequestContext) -> bool:
        key = keys.known_ips(context.tenant_id)
        known = await self.store.set_members(key)
        if context.ip_address in known:
            return False
        await self.store.set_add(key, context.ip_address)
        # The first IP a tenant is ever seen from establishes the baseline.
        return len(known) > 0

    @staticmethod
    def _suspicious_user_agent(context: RequestContext, policy: AnomalyPolicy) -> bool:
        return not context.user_agent or len(context.user_agent) < policy.min_user_agent_length

    async def _unusual_endpoint(self, context: RequestContext) -> bool:
        day = keys.utc_day(self.clock())
        raw = await self.store.get(keys.endpoint_daily(context.tenant_id, context.endpoint, day))
        if not raw:
            return True
        avg_raw = await self.store.get(keys.avg_endpoint_usage(context.tenant_id, day))
        avg_usage = int(avg_raw) if avg_raw else DEFAULT_AVG_ENDPOINT_USAGE
        return int(raw) < avg_usage * ENDPOINT_USAGE_RATIO

    def _off_hours(self, policy: AnomalyPolicy) -> bool:
        hour = datetime.fromtimestamp(self.clock(), tz=self.tz).hour
        return hour < policy.business_hours_start or hour > policy.business_hours_end
