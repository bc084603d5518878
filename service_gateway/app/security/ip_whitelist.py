"""
Per-tenant IP whitelist.
"""

import ipaddress
from typing import List, Optional, TYPE_CHECKING

from shared.errors import StoreError, ValidationError
from shared.logging import get_logger
from .. import keys
from ..models import GatewayConfig
from ..store import KeyValueStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class IPWhitelist:
    """Set of allowed caller IPs per tenant; an empty set allows everyone."""

    def __init__(self, store: KeyValueStore, *, metrics: Optional["MetricsCollector"] = None):
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("gateway.ip_whitelist")

    async def is_allowed(self, tenant_id: str, ip_address: str, config: GatewayConfig) -> bool:
        try:
            whitelist = await self.store.set_members(keys.ip_whitelist(tenant_id))
        except StoreError as exc:
            if self.metrics:
                self.metrics.increment_counter("gateway_store_errors_total", component="ip_whitelist")
            self.logger.error("IP whitelist unavailable", tenant_id=tenant_id, error=str(exc))
            return not config.fail_closed

        allowed = not whitelist or ip_address in whitelist
        if not allowed:
            self.logger.warning("IP not whitelisted", tenant_id=tenant_id, ip_address=ip_address)
        return allowed

    async def add(self, tenant_id: str, ip_address: str) -> str:
        try:
            normalized = str(ipaddress.ip_address(ip_address.strip()))
        except ValueError as exc:
            raise ValidationError("Invalid IP address") from exc
        await self.store.set_add(keys.ip_whitelist(tenant_id), normalized)
        self.logger.info("IP whitelisted", tenant_id=tenant_id, ip_address=normalized)
        return normalized

    async def members(self, tenant_id: str) -> List[str]:
        return await self.store.set_members(keys.ip_whitelist(tenant_id))
