"""
Base service class for CRM gateway services.
"""

import os
import time
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from shared.config import ServiceConfig, get_config
from shared.errors import GatewayException
from shared.logging import configure_logging, get_logger
from shared.metrics import get_metrics_collector

VERSION = "1.0.0"

# Paths polled by health checks and scrapers; not worth a log line per hit.
QUIET_PATHS = frozenset({"/health", "/metrics"})


def route_template(request: Request) -> str:
    """``/api/v1/gateway/config/{tenant_id}`` rather than the concrete path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class BaseService:
    """FastAPI app with health, metrics, logging and error handling wired in.

    Subclasses add routes and override ``_check_dependencies``.
    """

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()
        self._setup_exception_handlers()

    def _create_app(self) -> FastAPI:
        local = self.config.env == "local"
        return FastAPI(
            title=f"CRM {self.service_name.title()}",
            description=f"CRM Platform - {self.service_name.title()} Service",
            version=VERSION,
            docs_url="/docs" if local else None,
            redoc_url="/redoc" if local else None,
            openapi_url="/openapi.json" if local else None,
        )

    def _setup_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            response = await call_next(request)
            duration = time.time() - start_time

            endpoint = route_template(request)
            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )
            if request.url.path not in QUIET_PATHS:
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )
            return response

    def _setup_routes(self):

        @self.app.get("/health")
        async def health_check():
            """Liveness plus a per-dependency status map."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(status_code=503, content={"service": self.service_name, "status": "error"})

            # Dependency outages degrade the gateway but it keeps serving (fail-open).
            status = "ok" if all(value == "ok" for value in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)
            return {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": round(time.time() - self._start_time, 3),
                "dependencies": dependencies,
                "version": VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    def _setup_exception_handlers(self):

        @self.app.exception_handler(GatewayException)
        async def gateway_exception_handler(request: Request, exc: GatewayException):
            self.metrics.record_error(exc.code)
            if exc.status_code >= 500:
                self.logger.error("Gateway error", code=exc.code, message=exc.message)
                return JSONResponse(
                    status_code=exc.status_code,
                    content={"code": exc.code, "message": "Service unavailable", "details": {}}
                )
            self.logger.warning("Request rejected", code=exc.code, message=exc.message, details=exc.details)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error(type(exc).__name__)
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
