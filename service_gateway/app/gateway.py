"""
API gateway orchestration.

Every inbound request runs one fixed pipeline::

    START -> RATE_LIMIT_CHECK -> QUOTA_CHECK -> ANOMALY_CHECK
          -> IP_WHITELIST_CHECK -> RECORD -> PASSED

The first failing check short-circuits to its rejection terminal and no later
check runs. Unexpected exceptions end in REJECTED_500_ERROR. Rejection bodies
carry a fixed message only: no scores, factors, store keys or echoed input.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .analytics import AnalyticsRecorder
from .models import (
    AnomalyAction,
    ApiAnalytics,
    GatewayConfig,
    GatewayDecision,
    RateLimitResult,
    RequestContext,
)
from .quota import QuotaTracker
from .ratelimit import FixedWindowRateLimiter
from .security import AnomalyDetector, IPWhitelist, SecurityEventSink
from .store import KeyValueStore
from .tenancy import TenantConfigProvider


RATE_LIMIT_MESSAGE = "Rate limit exceeded"
QUOTA_MESSAGE = "API quota exceeded"
ANOMALY_MESSAGE = "Request blocked by security policy"
IP_MESSAGE = "IP address not whitelisted"
INTERNAL_MESSAGE = "Gateway processing failed"
TENANT_MESSAGE = "Tenant not found"


@dataclass
class GatewayOutcome:
    """Result of ``process_request``: no response means the caller proceeds."""

    context: RequestContext
    decision: GatewayDecision
    response: Optional[Response] = None
    config: Optional[GatewayConfig] = None
    rate_limit: Optional[RateLimitResult] = None

    @property
    def passed(self) -> bool:
        return self.decision is GatewayDecision.PASSED


def client_ip(headers: Mapping[str, str]) -> str:
    """Caller IP from proxy headers, ``"unknown"`` when none is present."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return "unknown"


def content_length(headers: Mapping[str, str]) -> int:
    raw = headers.get("content-length")
    try:
        return max(0, int(raw)) if raw else 0
    except ValueError:
        return 0


def error_response(status_code: int, message: str, headers: Optional[Dict[str, str]] = None,
                   retry_after: Optional[int] = None) -> JSONResponse:
    body = {"error": message}
    if retry_after is not None:
        body["retryAfter"] = retry_after
    return JSONResponse(status_code=status_code, content=body, headers=headers)


class APIGateway:
    """Runs the gateway pipeline for one request at a time.

    The instance holds no per-request state; all counters live in the shared
    key-value store, so any number of requests may be processed concurrently.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        config_provider: Optional[TenantConfigProvider] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        quota_tracker: Optional[QuotaTracker] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        ip_whitelist: Optional[IPWhitelist] = None,
        analytics: Optional[AnalyticsRecorder] = None,
        security_events: Optional[SecurityEventSink] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("gateway.pipeline")

        self.config_provider = config_provider or TenantConfigProvider(store, metrics=metrics)
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(store, clock=clock, metrics=metrics)
        self.quota_tracker = quota_tracker or QuotaTracker(store, clock=clock, metrics=metrics)
        self.anomaly_detector = anomaly_detector or AnomalyDetector(store, clock=clock, metrics=metrics)
        self.ip_whitelist = ip_whitelist or IPWhitelist(store, metrics=metrics)
        self.analytics = analytics or AnalyticsRecorder(store, clock=clock, metrics=metrics)
        self.security_events = security_events or SecurityEventSink()

    def build_context(self, request: Request, tenant_id: str, endpoint: str,
                      user_id: Optional[str] = None) -> RequestContext:
        headers = request.headers
        return RequestContext(
            tenant_id=tenant_id,
            user_id=user_id,
            endpoint=endpoint,
            method=request.method,
            ip_address=client_ip(headers),
            user_agent=headers.get("user-agent") or None,
            timestamp=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
            request_size_bytes=content_length(headers),
        )

    def _finish(self, outcome: GatewayOutcome) -> GatewayOutcome:
        if outcome.response is not None:
            outcome.context.status_code = outcome.response.status_code
        if self.metrics:
            self.metrics.increment_counter("gateway_decisions_total", decision=outcome.decision.value)
        return outcome

    async def process_request(self, request: Request, tenant_id: str, endpoint: str,
                              user_id: Optional[str] = None) -> GatewayOutcome:
        context = self.build_context(request, tenant_id, endpoint, user_id)
        try:
            return self._finish(await self._run_checks(context))
        except Exception as exc:
            self.logger.error(
                "Gateway processing error",
                tenant_id=tenant_id,
                endpoint=endpoint,
                error=str(exc),
                exc_info=True,
            )
            context.error_message = str(exc)
            return self._finish(GatewayOutcome(
                context=context,
                decision=GatewayDecision.REJECTED_500_ERROR,
                response=error_response(500, INTERNAL_MESSAGE),
            ))

    async def _run_checks(self, context: RequestContext) -> GatewayOutcome:
        tenant_id = context.tenant_id
        config = await self.config_provider.get_config(tenant_id)

        rate = await self.rate_limiter.check(tenant_id, context.endpoint, config)
        if not rate.allowed:
            return GatewayOutcome(
                context=context,
                decision=GatewayDecision.REJECTED_429_RATE,
                response=error_response(
                    429,
                    RATE_LIMIT_MESSAGE,
                    headers=FixedWindowRateLimiter.headers(rate),
                    retry_after=rate.retry_after,
                ),
                config=config,
                rate_limit=rate,
            )

        if not await self.quota_tracker.check_quotas(tenant_id, config):
            return GatewayOutcome(
                context=context,
                decision=GatewayDecision.REJECTED_429_QUOTA,
                response=error_response(429, QUOTA_MESSAGE),
                config=config,
                rate_limit=rate,
            )

        if config.security.anomaly_detection_enabled:
            anomaly = await self.anomaly_detector.detect(context, config)
            if anomaly.is_anomaly or anomaly.action is not AnomalyAction.ALLOW:
                await self.security_events.log_event(context, anomaly)
            if anomaly.action is AnomalyAction.BLOCK:
                return GatewayOutcome(
                    context=context,
                    decision=GatewayDecision.REJECTED_403_ANOMALY,
                    response=error_response(403, ANOMALY_MESSAGE),
                    config=config,
                    rate_limit=rate,
                )

        if config.security.ip_whitelist_enabled:
            if not await self.ip_whitelist.is_allowed(tenant_id, context.ip_address, config):
                return GatewayOutcome(
                    context=context,
                    decision=GatewayDecision.REJECTED_403_IP,
                    response=error_response(403, IP_MESSAGE),
                    config=config,
                    rate_limit=rate,
                )

        await self.analytics.record(context, config)
        return GatewayOutcome(
            context=context,
            decision=GatewayDecision.PASSED,
            config=config,
            rate_limit=rate,
        )

    async def record_response(self, context: RequestContext, response: Response,
                              config: Optional[GatewayConfig] = None) -> RequestContext:
        """Complete the context after the wrapped application answered."""
        try:
            started = context.timestamp.timestamp()
            context.response_time_ms = max(0, int(round((self.clock() - started) * 1000)))
            context.status_code = response.status_code
            context.response_size_bytes = content_length(response.headers)

            if config is None:
                config = await self.config_provider.get_config(context.tenant_id)

            if config.monitoring.analytics_enabled:
                await self.analytics.record_response(context)

            if config.monitoring.metrics_enabled and self.metrics:
                self.metrics.observe_histogram(
                    "gateway_response_time_seconds",
                    context.response_time_ms / 1000,
                    method=context.method,
                )
                self.metrics.increment_counter(
                    "gateway_responses_total",
                    status_class=f"{context.status_code // 100}xx",
                )

            if context.status_code >= 500 and config.monitoring.alerting_enabled:
                self._raise_alert(context)

        except Exception as exc:
            self.logger.error("Response recording failed", tenant_id=context.tenant_id, error=str(exc), exc_info=True)
        return context

    def _raise_alert(self, context: RequestContext) -> None:
        self.logger.error(
            "Gateway alert: upstream server error",
            tenant_id=context.tenant_id,
            endpoint=context.endpoint,
            method=context.method,
            status_code=context.status_code,
            response_time_ms=context.response_time_ms,
        )
        if self.metrics:
            self.metrics.increment_counter("gateway_alerts_total", tenant_id=context.tenant_id)

    async def get_analytics(self, tenant_id: str, days: int = 7) -> ApiAnalytics:
        return await self.analytics.get_analytics(tenant_id, days)

    async def start(self):
        await self.security_events.start()

    async def stop(self):
        await self.security_events.stop()
        await self.store.close()
