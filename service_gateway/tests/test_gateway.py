"""
Tests for the gateway pipeline.
"""

import json
from datetime import timezone

import pytest
from unittest.mock import AsyncMock
from starlette.requests import Request
from starlette.responses import JSONResponse

from shared.errors import StoreError
from service_gateway.app import keys
from service_gateway.app.gateway import APIGateway, client_ip, content_length
from service_gateway.app.models import (
    AnomalyPolicy,
    GatewayConfig,
    GatewayDecision,
    QuotaSettings,
    RateLimitSettings,
    SecuritySettings,
)
from service_gateway.app.security import AnomalyDetector, SecurityEventSink
from service_gateway.app.store import KeyValueStore
from service_gateway.app.tenancy import TenantConfigProvider
from service_gateway.tests.helpers import BROWSER_UA, BUSINESS_HOURS_TS, metric_value


DAY = keys.utc_day(BUSINESS_HOURS_TS)


def make_request(path="/api/leads", method="GET", headers=None):
    headers = {"user-agent": BROWSER_UA, "x-forwarded-for": "10.0.0.1", **(headers or {})}
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }
    return Request(scope)


def body(response) -> dict:
    return json.loads(response.body)


class FailingStore(KeyValueStore):
    """Store whose every operation fails."""

    async def _fail(self, *args, **kwargs):
        raise StoreError("test", "store unavailable")

    get = set = set_with_expiry = increment = expire = set_members = set_size = set_add = get_many = _fail


class TestClientIp:

    def test_forwarded_for_first_entry(self):
        assert client_ip({"x-forwarded-for": "203.0.113.5, 10.0.0.1"}) == "203.0.113.5"

    def test_real_ip_fallback(self):
        assert client_ip({"x-real-ip": " 203.0.113.7 "}) == "203.0.113.7"

    def test_unknown_without_proxy_headers(self):
        assert client_ip({}) == "unknown"

    def test_content_length(self):
        assert content_length({"content-length": "120"}) == 120
        assert content_length({"content-length": "-5"}) == 0
        assert content_length({"content-length": "abc"}) == 0
        assert content_length({}) == 0


class TestAPIGateway:
    """Test cases for APIGateway.process_request."""

    @pytest.fixture
    def sink(self):
        sink = SecurityEventSink()
        sink.log_event = AsyncMock()
        return sink

    @pytest.fixture
    def provider(self, store):
        return TenantConfigProvider(store)

    @pytest.fixture
    def gateway(self, store, clock, metrics, sink, provider):
        return APIGateway(
            store,
            config_provider=provider,
            anomaly_detector=AnomalyDetector(store, clock=clock, tz=timezone.utc, metrics=metrics),
            security_events=sink,
            metrics=metrics,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_clean_request_passes_and_is_counted(self, gateway, store, metrics):
        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.passed
        assert outcome.response is None
        assert outcome.rate_limit.remaining == 999
        assert outcome.context.ip_address == "10.0.0.1"
        assert await store.get(keys.quota_daily("acme", DAY)) == "1"
        assert metric_value(metrics, "gateway_decisions_total", decision="passed") == 1

    @pytest.mark.asyncio
    async def test_rate_limited(self, gateway, provider, store, metrics):
        await provider.put_config("acme", GatewayConfig(
            rate_limit=RateLimitSettings(window_seconds=60, max_requests=2),
        ))
        for _ in range(2):
            await gateway.process_request(make_request(), "acme", "/api/leads")

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.decision is GatewayDecision.REJECTED_429_RATE
        assert outcome.response.status_code == 429
        assert body(outcome.response) == {"error": "Rate limit exceeded", "retryAfter": 60}
        assert outcome.response.headers["Retry-After"] == "60"
        assert outcome.response.headers["X-RateLimit-Remaining"] == "0"
        # later stages did not run
        assert await store.get(keys.quota_daily("acme", DAY)) == "2"
        assert metric_value(metrics, "gateway_decisions_total", decision="rejected_429_rate") == 1

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, gateway, provider, store):
        await provider.put_config("acme", GatewayConfig(quotas=QuotaSettings(daily_limit=5)))
        await store.set(keys.quota_daily("acme", DAY), "5")

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.decision is GatewayDecision.REJECTED_429_QUOTA
        assert outcome.response.status_code == 429
        assert body(outcome.response) == {"error": "API quota exceeded"}
        assert await store.get(keys.quota_daily("acme", DAY)) == "5"

    @pytest.mark.asyncio
    async def test_anomaly_block(self, gateway, provider, sink, store):
        await provider.put_config("acme", GatewayConfig(anomaly=AnomalyPolicy(endpoint_weight=80)))

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.decision is GatewayDecision.REJECTED_403_ANOMALY
        assert outcome.response.status_code == 403
        assert body(outcome.response) == {"error": "Request blocked by security policy"}
        sink.log_event.assert_awaited_once()
        anomaly = sink.log_event.await_args.args[1]
        assert anomaly.risk_score == 80
        assert await store.get(keys.quota_daily("acme", DAY)) is None

    @pytest.mark.asyncio
    async def test_anomaly_throttle_passes_but_is_logged(self, gateway, provider, sink):
        await provider.put_config("acme", GatewayConfig(anomaly=AnomalyPolicy(endpoint_weight=45)))

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.passed
        sink.log_event.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_anomaly_detection_disabled(self, gateway, provider, sink):
        await provider.put_config("acme", GatewayConfig(
            security=SecuritySettings(anomaly_detection_enabled=False),
            anomaly=AnomalyPolicy(endpoint_weight=100),
        ))

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.passed
        sink.log_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_ip_not_whitelisted(self, gateway, provider):
        await provider.put_config("acme", GatewayConfig(security=SecuritySettings(ip_whitelist_enabled=True)))
        await gateway.ip_whitelist.add("acme", "192.0.2.1")

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.decision is GatewayDecision.REJECTED_403_IP
        assert body(outcome.response) == {"error": "IP address not whitelisted"}

    @pytest.mark.asyncio
    async def test_whitelisted_ip_passes(self, gateway, provider):
        await provider.put_config("acme", GatewayConfig(security=SecuritySettings(ip_whitelist_enabled=True)))
        await gateway.ip_whitelist.add("acme", "10.0.0.1")

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")
        assert outcome.passed

    @pytest.mark.asyncio
    async def test_unavailable_store_passes_request(self, clock, metrics):
        gateway = APIGateway(FailingStore(), security_events=SecurityEventSink(), metrics=metrics, clock=clock)

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.passed
        assert metric_value(metrics, "gateway_store_errors_total", component="rate_limiter") == 1

    @pytest.mark.asyncio
    async def test_unavailable_store_fail_closed_rejects(self, clock):
        store = FailingStore()
        gateway = APIGateway(
            store,
            config_provider=TenantConfigProvider(store, GatewayConfig(fail_closed=True)),
            security_events=SecurityEventSink(),
            clock=clock,
        )

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.decision is GatewayDecision.REJECTED_429_RATE

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_generic_500(self, gateway, provider, metrics):
        provider.get_config = AsyncMock(side_effect=RuntimeError("redis://secret-host:6379 exploded"))

        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        assert outcome.decision is GatewayDecision.REJECTED_500_ERROR
        assert outcome.response.status_code == 500
        assert body(outcome.response) == {"error": "Gateway processing failed"}
        assert "secret-host" in outcome.context.error_message
        assert metric_value(metrics, "gateway_decisions_total", decision="rejected_500_error") == 1

    @pytest.mark.asyncio
    async def test_rejection_bodies_do_not_echo_input(self, gateway, provider):
        await provider.put_config("acme", GatewayConfig(anomaly=AnomalyPolicy(endpoint_weight=80)))

        outcome = await gateway.process_request(make_request(path="/api/<script>"), "acme", "/api/<script>")

        raw = outcome.response.body.decode()
        assert "script" not in raw
        assert "80" not in raw
        assert "acme" not in raw


class TestRecordResponse:
    """Test cases for APIGateway.record_response."""

    @pytest.fixture
    def gateway(self, store, clock, metrics):
        return APIGateway(store, security_events=SecurityEventSink(), metrics=metrics, clock=clock)

    @pytest.mark.asyncio
    async def test_completes_context_and_records(self, gateway, store, clock, metrics):
        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")
        clock.advance(0.25)
        response = JSONResponse({"leads": []})

        context = await gateway.record_response(outcome.context, response, outcome.config)

        assert context.status_code == 200
        assert context.response_time_ms == 250
        assert context.response_size_bytes == len(response.body)
        assert await store.get(keys.response_time_bucket("acme", "100-500ms", DAY)) == "1"
        assert metric_value(metrics, "gateway_responses_total", status_class="2xx") == 1

    @pytest.mark.asyncio
    async def test_server_error_raises_alert(self, gateway, store, metrics):
        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")

        await gateway.record_response(outcome.context, JSONResponse({}, status_code=502), outcome.config)

        assert metric_value(metrics, "gateway_alerts_total", tenant_id="acme") == 1
        assert await store.get(keys.errors_daily("acme", DAY)) == "1"

    @pytest.mark.asyncio
    async def test_never_raises(self, gateway, metrics):
        outcome = await gateway.process_request(make_request(), "acme", "/api/leads")
        gateway.analytics.record_response = AsyncMock(side_effect=RuntimeError("boom"))

        context = await gateway.record_response(outcome.context, JSONResponse({}), outcome.config)

        assert context.status_code == 200
