"""
Starlette middleware that puts the API gateway in front of the CRM routes.
"""

import ipaddress
import re
from contextlib import nullcontext
from typing import Callable, Iterable, Mapping, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from shared.logging import clear_context, get_logger, set_request_id, set_tenant
from shared.metrics import MetricsCollector
from .gateway import APIGateway, TENANT_MESSAGE, error_response
from .models import GatewayDecision
from .ratelimit import FixedWindowRateLimiter


PUBLIC_PATHS = frozenset({
    "/health",
    "/metrics",
    "/docs",
    "/redoc",
    "/openapi.json",
})

# Operator routes are served by the gateway itself and are not tenant traffic.
PUBLIC_PREFIXES = ("/api/v1/gateway/",)

RESERVED_SUBDOMAINS = frozenset({"www", "api"})

_TENANT_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


def normalize_tenant_id(candidate: Optional[str]) -> Optional[str]:
    if candidate and _TENANT_ID.match(candidate):
        return candidate
    return None


def extract_tenant_id(headers: Mapping[str, str]) -> Optional[str]:
    """Tenant from ``x-tenant-id``, else the first label of ``Host``.

    ``www``/``api`` subdomains, IP literals and single-label hosts such as
    ``localhost`` never name a tenant. Values that are not plain identifiers
    are rejected rather than sanitized.
    """
    header = (headers.get("x-tenant-id") or "").strip()
    if header:
        return normalize_tenant_id(header)

    host = (headers.get("host") or "").strip().lower()
    if not host:
        return None
    if host.startswith("["):
        return None  # bracketed IPv6 literal
    hostname = host.rsplit(":", 1)[0] if host.count(":") == 1 else host
    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass

    labels = hostname.split(".")
    if len(labels) < 2:
        return None
    subdomain = labels[0]
    if subdomain in RESERVED_SUBDOMAINS:
        return None
    return normalize_tenant_id(subdomain)


class GatewayMiddleware(BaseHTTPMiddleware):
    """Runs every tenant request through ``APIGateway``.

    Request flow:
    1. Skip public and operator paths and CORS preflights
    2. Resolve the tenant (400 when impossible)
    3. ``process_request``: return its rejection response if any
    4. Call the wrapped application
    5. Attach rate limit headers and ``record_response``
    """

    def __init__(
        self,
        app,
        gateway: APIGateway,
        metrics: Optional[MetricsCollector] = None,
        public_paths: Iterable[str] = PUBLIC_PATHS,
        public_prefixes: Iterable[str] = PUBLIC_PREFIXES,
    ):
        super().__init__(app)
        self.gateway = gateway
        self.metrics = metrics
        self.public_paths = frozenset(public_paths)
        self.public_prefixes = tuple(public_prefixes)
        self.logger = get_logger("gateway.middleware")

    def _is_public(self, path: str) -> bool:
        return path in self.public_paths or path.startswith(self.public_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if request.method == "OPTIONS" or self._is_public(path):
            return await call_next(request)

        request_id = set_request_id(request.headers.get("X-Request-ID"))
        try:
            tenant_id = extract_tenant_id(request.headers)
            if tenant_id is None:
                self.logger.warning("Tenant not resolvable", path=path)
                if self.metrics:
                    self.metrics.increment_counter(
                        "gateway_decisions_total", decision=GatewayDecision.REJECTED_400_TENANT.value
                    )
                return error_response(400, TENANT_MESSAGE)

            set_tenant(tenant_id)
            with self._inflight():
                outcome = await self.gateway.process_request(request, tenant_id, path)
                if outcome.response is not None:
                    outcome.response.headers["X-Request-ID"] = request_id
                    return outcome.response

                request.state.gateway_context = outcome.context
                try:
                    response = await call_next(request)
                except Exception as exc:
                    self.logger.error("Downstream handler failed", path=path, error=str(exc), exc_info=True)
                    response = JSONResponse(status_code=500, content={"error": "Internal server error"})

                if outcome.rate_limit is not None:
                    for header, value in FixedWindowRateLimiter.headers(outcome.rate_limit).items():
                        response.headers[header] = value
                response.headers["X-Request-ID"] = request_id

                await self.gateway.record_response(outcome.context, response, outcome.config)
                return response
        finally:
            clear_context()

    def _inflight(self):
        if self.metrics:
            return self.metrics.track_inflight()
        return nullcontext()
