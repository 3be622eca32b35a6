"""Tenant resolution middleware with JWT and header-based modes.

Resolves tenant context from:
1. ``tenant_id`` claim of the JWT in the Authorization header (user requests)
2. X-Tenant-ID header (service-to-service calls, scripts, the emulator)

When both are present they must agree. After resolution, sets TenantContext
in contextvars for the request scope and mirrors the id on request.state.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.crm.core.security import bearer_token, decode_token
from src.crm.core.tenant import (
    SKIP_TENANT_PATHS,
    TenantContext,
    reset_tenant_context,
    set_tenant_context,
)

logger = logging.getLogger(__name__)


class TenantAuthMiddleware(BaseHTTPMiddleware):
    """Resolve the tenant of every request outside SKIP_TENANT_PATHS.

    Requests without a resolvable tenant get a 400; a JWT whose tenant
    differs from X-Tenant-ID gets a 403.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        jwt_tenant = self._resolve_from_jwt(request)
        header_tenant = request.headers.get("X-Tenant-ID") or None

        if jwt_tenant and header_tenant and jwt_tenant != header_tenant:
            logger.warning("Tenant mismatch: token=%s header=%s", jwt_tenant, header_tenant)
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Token tenant does not match X-Tenant-ID"},
            )

        tenant_id = jwt_tenant or header_tenant
        if not tenant_id:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "detail": "Missing tenant context. Provide Authorization header with JWT or X-Tenant-ID header."
                },
            )

        request.state.tenant_id = tenant_id
        token = set_tenant_context(TenantContext(tenant_id=tenant_id))
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(token)

    @staticmethod
    def _resolve_from_jwt(request: Request) -> str | None:
        """``tenant_id`` claim of a verifiable bearer token, else None."""
        token = bearer_token(request.headers.get("Authorization"))
        if not token:
            return None
        payload = decode_token(token)
        if not payload:
            return None
        tenant_id = payload.get("tenant_id")
        return str(tenant_id) if tenant_id else None
