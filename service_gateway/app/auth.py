"""
Operator authentication for the gateway's own management routes.
"""

import hmac
from typing import Optional

from fastapi import HTTPException, Request
from fastapi.security import HTTPBearer

from shared.logging import get_logger


class OperatorAuth:
    """FastAPI dependency that admits callers holding the operator API key.

    The key is read from ``X-API-Key`` first, then from an
    ``Authorization: Bearer`` header. Missing credentials give 401, a wrong
    key gives 403. With no key configured every call is refused.
    """

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key
        self.security = HTTPBearer(auto_error=False)
        self.logger = get_logger("gateway.operator_auth")

    async def _presented_key(self, request: Request) -> Optional[str]:
        api_key = request.headers.get("X-API-Key")
        if api_key:
            return api_key
        credentials = await self.security(request)
        return credentials.credentials if credentials else None

    async def __call__(self, request: Request) -> None:
        presented = await self._presented_key(request)
        if not presented:
            raise HTTPException(
                status_code=401,
                detail="X-API-Key or Authorization header required",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not self.api_key:
            self.logger.warning("Operator API called but no operator key is configured", path=request.url.path)
            raise HTTPException(status_code=403, detail="Operator API disabled")

        if not hmac.compare_digest(presented.encode("utf-8"), self.api_key.encode("utf-8")):
            self.logger.warning("Operator key rejected", path=request.url.path, api_key=presented[:4] + "...")
            raise HTTPException(status_code=403, detail="Invalid API key")
