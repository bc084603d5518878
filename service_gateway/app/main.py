"""
API gateway service for the CRM platform.
"""

import time
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError
from .auth import OperatorAuth
from .gateway import APIGateway
from .models import GatewayConfig
from .middleware import GatewayMiddleware, normalize_tenant_id
from .security import SecurityEventSink
from .store import KeyValueStore, build_store
from .tenancy import TenantConfigProvider


SERVICE_NAME = "gateway"
DEFAULT_PORT = 8000


class WhitelistEntry(BaseModel):
    ip: str


def _tenant_or_400(tenant_id: str) -> str:
    if not normalize_tenant_id(tenant_id):
        raise ValidationError("Invalid tenant id")
    return tenant_id


class GatewayService(BaseService):
    """API gateway service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
        gateway: Optional[APIGateway] = None,
    ):
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config=config)
        self.store = store or build_store(self.config.redis_url)

        if gateway is None:
            gateway = APIGateway(
                self.store,
                config_provider=TenantConfigProvider(
                    self.store,
                    GatewayConfig(fail_closed=self.config.fail_closed),
                    ttl_seconds=self.config.config_ttl_seconds,
                    metrics=self.metrics,
                ),
                security_events=SecurityEventSink(self.config.postgres_dsn),
                metrics=self.metrics,
                clock=clock,
            )
        self.gateway = gateway

        @self.app.on_event("startup")
        async def _startup():
            await self.gateway.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.gateway.stop()

        self._setup_gateway_routes()
        self._setup_crm_routes()
        self.app.add_middleware(GatewayMiddleware, gateway=self.gateway, metrics=self.metrics)

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"kv_store": "ok" if await self.store.ping() else "error"}

    def _setup_gateway_routes(self):
        """Operator routes for analytics and per-tenant policy."""
        router = APIRouter(
            prefix="/api/v1/gateway",
            dependencies=[Depends(OperatorAuth(self.config.operator_api_key))],
        )

        @router.get("/analytics")
        async def get_analytics(
            tenant_id: str = Query(..., alias="tenantId"),
            days: int = Query(7, ge=1, le=90),
        ):
            tenant_id = _tenant_or_400(tenant_id)
            analytics = await self.gateway.get_analytics(tenant_id, days)
            return analytics.model_dump(by_alias=True)

        @router.get("/config/{tenant_id}")
        async def get_tenant_config(tenant_id: str):
            tenant_id = _tenant_or_400(tenant_id)
            config = await self.gateway.config_provider.get_config(tenant_id)
            return config.model_dump(by_alias=True)

        @router.put("/config/{tenant_id}")
        async def put_tenant_config(tenant_id: str, payload: Dict[str, Any] = Body(...)):
            tenant_id = _tenant_or_400(tenant_id)
            config = await self.gateway.config_provider.put_raw_config(tenant_id, payload)
            return config.model_dump(by_alias=True)

        @router.delete("/config/{tenant_id}", status_code=204)
        async def reset_tenant_config(tenant_id: str):
            tenant_id = _tenant_or_400(tenant_id)
            await self.gateway.config_provider.reset_config(tenant_id)

        @router.get("/quota/{tenant_id}")
        async def get_quota_usage(tenant_id: str):
            tenant_id = _tenant_or_400(tenant_id)
            config = await self.gateway.config_provider.get_config(tenant_id)
            usage = await self.gateway.quota_tracker.usage(tenant_id, config)
            return {
                "tenantId": tenant_id,
                "daily": usage.daily,
                "dailyLimit": usage.daily_limit,
                "monthly": usage.monthly,
                "monthlyLimit": usage.monthly_limit,
                "withinQuota": usage.within_quota,
            }

        @router.post("/whitelist/{tenant_id}", status_code=201)
        async def add_whitelist_entry(tenant_id: str, entry: WhitelistEntry):
            tenant_id = _tenant_or_400(tenant_id)
            ip = await self.gateway.ip_whitelist.add(tenant_id, entry.ip)
            return {"tenantId": tenant_id, "ip": ip}

        self.app.include_router(router)

    def _setup_crm_routes(self):
        """Minimal CRM resources served behind the gateway."""

        @self.app.get("/api/leads")
        async def list_leads():
            return {"leads": []}

        @self.app.get("/api/deals")
        async def list_deals():
            return {"deals": []}


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create the gateway FastAPI application."""
    service = GatewayService(config, **kwargs)
    return service.app


def main():
    GatewayService(get_config(SERVICE_NAME, DEFAULT_PORT)).run()


if __name__ == "__main__":
    main()
