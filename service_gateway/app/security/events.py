"""
Security audit sink backed by PostgreSQL.
"""

from typing import Optional

import asyncpg

from shared.errors import StoreError
from shared.logging import get_logger
from ..models import AnomalyResult, RequestContext


ANOMALY_EVENT = "anomaly_detected"

_CREATE_TABLE = """
    CREATE TABLE IF NOT EXISTS security_events (
        id BIGSERIAL PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        event_type VARCHAR(64) NOT NULL,
        ip_address VARCHAR(64),
        user_agent TEXT,
        endpoint TEXT,
        risk_score INTEGER NOT NULL DEFAULT 0,
        factors TEXT[] NOT NULL DEFAULT '{}',
        action_taken VARCHAR(16) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
"""

_CREATE_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_security_events_tenant_created
        ON security_events(tenant_id, created_at DESC);
"""

_INSERT_EVENT = """
    INSERT INTO security_events (
        tenant_id, event_type, ip_address, user_agent, endpoint,
        risk_score, factors, action_taken, created_at
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
"""


class SecurityEventSink:
    """Appends anomaly events to the ``security_events`` audit table.

    Writes are fire-and-forget: a failed insert is logged and dropped, never
    raised into the request path. Without a DSN the sink only logs.
    """

    def __init__(self, dsn: Optional[str] = None, pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.pool = pool
        self.logger = get_logger("gateway.security_events")

    async def start(self):
        """Create the pool and the audit table."""
        if self.pool is not None or not self.dsn:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=5,
                command_timeout=10
            )
            async with self.pool.acquire() as conn:
                await conn.execute(_CREATE_TABLE)
                await conn.execute(_CREATE_INDEX)
            self.logger.info("Security event sink started")
        except Exception as e:
            self.logger.error("Failed to start security event sink", error=str(e))
            raise StoreError("security_events.start", str(e)) from e

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Security event sink stopped")

    async def log_event(self, context: RequestContext, anomaly: AnomalyResult, event_type: str = ANOMALY_EVENT) -> None:
        self.logger.warning(
            "Security event",
            event_type=event_type,
            tenant_id=context.tenant_id,
            ip_address=context.ip_address,
            endpoint=context.endpoint,
            risk_score=anomaly.risk_score,
            factors=anomaly.factors,
            action_taken=anomaly.action.value,
        )
        if self.pool is None:
            return

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    _INSERT_EVENT,
                    context.tenant_id,
                    event_type,
                    context.ip_address,
                    context.user_agent,
                    context.endpoint,
                    anomaly.risk_score,
                    list(anomaly.factors),
                    anomaly.action.value,
                    context.timestamp,
                )
        except Exception as e:
            self.logger.error("Security event logging failed", tenant_id=context.tenant_id, error=str(e))
