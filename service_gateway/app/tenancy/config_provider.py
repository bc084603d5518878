"""
Per-tenant gateway configuration, cached in the key-value store.
"""

from typing import Optional, TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from shared.errors import StoreError, ValidationError
from shared.logging import get_logger
from .. import keys
from ..models import DEFAULT_GATEWAY_CONFIG, GatewayConfig
from ..store import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


CONFIG_TTL_SECONDS = 3600


class TenantConfigProvider:
    """Resolves a tenant's GatewayConfig.

    Operator overrides live under a key without expiry; the cache entry in
    front of it expires after one TTL. A cache miss reloads the override, or
    seeds the process default when the tenant has none. Store failures fall
    back to the in-memory default without persisting it.
    """

    def __init__(
        self,
        store: KeyValueStore,
        default: GatewayConfig = DEFAULT_GATEWAY_CONFIG,
        *,
        ttl_seconds: int = CONFIG_TTL_SECONDS,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.default = default
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("gateway.tenant_config")

    def _parse(self, tenant_id: str, raw: Optional[str], source: str) -> Optional[GatewayConfig]:
        if not raw:
            return None
        try:
            return GatewayConfig.from_json(raw)
        except PydanticValidationError as exc:
            self.logger.warning(
                "Discarding undecodable tenant config",
                tenant_id=tenant_id,
                source=source,
                error=str(exc),
            )
            return None

    async def get_config(self, tenant_id: str) -> GatewayConfig:
        key = keys.gateway_config(tenant_id)
        try:
            cached = self._parse(tenant_id, await self.store.get(key), "cache")
            if cached is not None:
                return cached

            override = self._parse(
                tenant_id, await self.store.get(keys.gateway_config_override(tenant_id)), "override"
            )
            config = override or self.default
            await self.store.set_with_expiry(key, config.to_json(), self.ttl_seconds)
            self.logger.debug(
                "Cached tenant config",
                tenant_id=tenant_id,
                source="override" if override else "default",
                ttl=self.ttl_seconds,
            )
            return config

        except StoreError as exc:
            self.logger.warning("Tenant config unavailable, using default", tenant_id=tenant_id, error=str(exc))
            if self.metrics:
                self.metrics.increment_counter("gateway_store_errors_total", component="tenant_config")
            return self.default

    async def put_config(self, tenant_id: str, config: GatewayConfig) -> GatewayConfig:
        """Persist an operator override and refresh the cached copy."""
        payload = config.to_json()
        await self.store.set(keys.gateway_config_override(tenant_id), payload)
        await self.store.set_with_expiry(keys.gateway_config(tenant_id), payload, self.ttl_seconds)
        self.logger.info("Tenant config updated", tenant_id=tenant_id)
        return config

    async def put_raw_config(self, tenant_id: str, payload: dict) -> GatewayConfig:
        """Validate a camelCase payload and store it."""
        try:
            config = GatewayConfig.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid gateway configuration",
                details={"errors": [
                    {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                    for err in exc.errors()
                ]},
            ) from exc
        return await self.put_config(tenant_id, config)

    async def invalidate(self, tenant_id: str) -> None:
        """Drop the cached entry; the next read reloads the override or default."""
        await self.store.expire(keys.gateway_config(tenant_id), 0)
        self.logger.info("Tenant config invalidated", tenant_id=tenant_id)

    async def reset_config(self, tenant_id: str) -> None:
        """Remove the operator override so the tenant returns to the default."""
        await self.store.expire(keys.gateway_config_override(tenant_id), 0)
        await self.invalidate(tenant_id)
        self.logger.info("Tenant config reset to default", tenant_id=tenant_id)
