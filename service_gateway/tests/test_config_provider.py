"""
Unit tests for TenantConfigProvider.
"""

import pytest
from unittest.mock import AsyncMock

from pydantic import ValidationError as PydanticValidationError

from shared.errors import StoreError, ValidationError
from service_gateway.app import keys
from service_gateway.app.models import DEFAULT_GATEWAY_CONFIG, GatewayConfig, RateLimitSettings
from service_gateway.app.tenancy import TenantConfigProvider
from service_gateway.tests.helpers import metric_value


class TestTenantConfigProvider:
    """Test cases for TenantConfigProvider."""

    @pytest.fixture
    def provider(self, store, metrics):
        return TenantConfigProvider(store, ttl_seconds=3600, metrics=metrics)

    @pytest.mark.asyncio
    async def test_first_read_seeds_default(self, provider, store):
        config = await provider.get_config("acme")

        assert config == DEFAULT_GATEWAY_CONFIG
        cached = await store.get(keys.gateway_config("acme"))
        assert GatewayConfig.from_json(cached) == DEFAULT_GATEWAY_CONFIG
        assert store.ttl(keys.gateway_config("acme")) == pytest.approx(3600)

    @pytest.mark.asyncio
    async def test_cached_override_is_returned(self, provider):
        override = GatewayConfig(rate_limit=RateLimitSettings(window_seconds=60, max_requests=5))
        await provider.put_config("acme", override)

        config = await provider.get_config("acme")
        assert config.rate_limit.max_requests == 5
        assert config.rate_limit.window_seconds == 60

    @pytest.mark.asyncio
    async def test_override_survives_cache_expiry(self, provider, store, clock):
        override = GatewayConfig.model_validate({"security": {"ipWhitelistEnabled": True}})
        await provider.put_config("acme", override)

        clock.advance(3601)
        assert await store.get(keys.gateway_config("acme")) is None

        config = await provider.get_config("acme")
        assert config.security.ip_whitelist_enabled is True
        assert store.ttl(keys.gateway_config("acme")) == pytest.approx(3600)
        assert store.ttl(keys.gateway_config_override("acme")) is None

    @pytest.mark.asyncio
    async def test_corrupt_override_falls_back_to_default(self, provider, store):
        await store.set(keys.gateway_config_override("acme"), "{not json")

        config = await provider.get_config("acme")

        assert config == DEFAULT_GATEWAY_CONFIG

    @pytest.mark.asyncio
    async def test_corrupt_entry_treated_as_miss(self, provider, store):
        await store.set(keys.gateway_config("acme"), '{"rateLimit": "not-an-object"')

        config = await provider.get_config("acme")

        assert config == DEFAULT_GATEWAY_CONFIG
        assert GatewayConfig.from_json(await store.get(keys.gateway_config("acme"))) == DEFAULT_GATEWAY_CONFIG

    @pytest.mark.asyncio
    async def test_store_failure_returns_default(self, provider, store, metrics):
        store.get = AsyncMock(side_effect=StoreError("get", "down"))

        config = await provider.get_config("acme")

        assert config == DEFAULT_GATEWAY_CONFIG
        assert metric_value(metrics, "gateway_store_errors_total", component="tenant_config") == 1

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, provider):
        await provider.put_config("acme", GatewayConfig(rate_limit=RateLimitSettings(max_requests=5)))

        other = await provider.get_config("globex")
        assert other.rate_limit.max_requests == 1000

    @pytest.mark.asyncio
    async def test_put_raw_config_accepts_camel_case(self, provider):
        config = await provider.put_raw_config("acme", {
            "rateLimit": {"windowSeconds": 60, "maxRequests": 5, "burst": 0},
            "security": {"ipWhitelistEnabled": True},
        })

        assert config.rate_limit.max_requests == 5
        assert config.security.ip_whitelist_enabled is True
        assert (await provider.get_config("acme")) == config

    @pytest.mark.asyncio
    async def test_put_raw_config_rejects_invalid(self, provider):
        with pytest.raises(ValidationError) as exc_info:
            await provider.put_raw_config("acme", {"rateLimit": {"maxRequests": 0}})

        errors = exc_info.value.details["errors"]
        assert errors[0]["loc"] == "rateLimit.maxRequests"

    @pytest.mark.asyncio
    async def test_put_raw_config_rejects_unknown_fields(self, provider):
        with pytest.raises(ValidationError):
            await provider.put_raw_config("acme", {"unknownSection": {}})

    @pytest.mark.asyncio
    async def test_invalidate_reseeds_default(self, provider, store):
        await store.set_with_expiry(keys.gateway_config("acme"), GatewayConfig(fail_closed=True).to_json(), 3600)
        await provider.invalidate("acme")

        config = await provider.get_config("acme")
        assert config == DEFAULT_GATEWAY_CONFIG

    @pytest.mark.asyncio
    async def test_invalidate_keeps_override(self, provider, store):
        await provider.put_config("acme", GatewayConfig(rate_limit=RateLimitSettings(max_requests=5)))
        await provider.invalidate("acme")

        assert await store.get(keys.gateway_config("acme")) is None
        config = await provider.get_config("acme")
        assert config.rate_limit.max_requests == 5

    @pytest.mark.asyncio
    async def test_reset_config_restores_default(self, provider, store):
        await provider.put_config("acme", GatewayConfig(rate_limit=RateLimitSettings(max_requests=5)))
        await provider.reset_config("acme")

        assert await store.get(keys.gateway_config_override("acme")) is None
        config = await provider.get_config("acme")
        assert config == DEFAULT_GATEWAY_CONFIG

    @pytest.mark.asyncio
    async def test_custom_default(self, store):
        provider = TenantConfigProvider(store, GatewayConfig(fail_closed=True))
        config = await provider.get_config("acme")
        assert config.fail_closed is True


def test_anomaly_policy_ordering_validated():
    with pytest.raises(PydanticValidationError):
        GatewayConfig.model_validate({"anomaly": {"throttleThreshold": 80, "blockThreshold": 70}})
