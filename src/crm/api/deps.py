"""FastAPI dependency injection for tenant-scoped resources and authentication.

These dependencies are used in endpoint function signatures to inject the
tenant context, the tenant Redis wrapper, the callable-functions client,
and the authenticated user.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from src.crm.core.redis import TenantRedis, get_tenant_redis
from src.crm.core.security import bearer_token, verify_token
from src.crm.core.tenant import TenantContext, get_current_tenant
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError, friendly_message

# Firebase ID token forwarded to callable functions on behalf of the user
FIREBASE_TOKEN_HEADER = "X-Firebase-ID-Token"

# Callable-function codes passed through to API clients; the rest become 502
FUNCTIONS_PASSTHROUGH_STATUS: dict[str, int] = {
    "functions/invalid-argument": status.HTTP_400_BAD_REQUEST,
    "functions/unauthenticated": status.HTTP_401_UNAUTHORIZED,
    "functions/permission-denied": status.HTTP_403_FORBIDDEN,
    "functions/not-found": status.HTTP_404_NOT_FOUND,
    "functions/already-exists": status.HTTP_409_CONFLICT,
    "functions/resource-exhausted": status.HTTP_429_TOO_MANY_REQUESTS,
    "functions/deadline-exceeded": status.HTTP_504_GATEWAY_TIMEOUT,
}


class CurrentUser(BaseModel):
    """Authenticated user, read from the JWT claims."""

    id: str
    tenant_id: str
    email: str | None = None
    name: str | None = None


async def get_tenant() -> TenantContext:
    """Get the current tenant context (set by TenantAuthMiddleware)."""
    return get_current_tenant()


async def get_redis() -> TenantRedis:
    """Get a tenant-aware Redis client."""
    return get_tenant_redis()


async def get_current_user(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> CurrentUser:
    """Extract and validate the current user from the bearer JWT.

    Raises:
        HTTPException(401): If no valid token is provided.
        HTTPException(403): If the token's tenant doesn't match the request tenant.
    """
    token = bearer_token(request.headers.get("Authorization"))
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(token)
    token_tenant_id = payload.get("tenant_id")
    if token_tenant_id and token_tenant_id != tenant.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token tenant does not match request tenant context",
        )

    return CurrentUser(
        id=str(payload["sub"]),
        tenant_id=tenant.tenant_id,
        email=payload.get("email"),
        name=payload.get("name"),
    )


def require_state(request: Request, attr: str, label: str) -> Any:
    """Fetch a service from app.state, 503 if it was not set up at startup."""
    service = getattr(request.app.state, attr, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


async def get_functions_client(request: Request) -> CloudFunctionsClient:
    """Callable-functions client authenticated with the caller's Firebase ID token."""
    client: CloudFunctionsClient = require_state(request, "functions_client", "Cloud Functions client")
    id_token = request.headers.get(FIREBASE_TOKEN_HEADER)
    return client.with_token(id_token) if id_token else client


def functions_http_error(error: FunctionsError) -> HTTPException:
    """HTTPException for a failed callable function, with the user-facing message."""
    return HTTPException(
        status_code=FUNCTIONS_PASSTHROUGH_STATUS.get(error.code, status.HTTP_502_BAD_GATEWAY),
        detail={"code": error.code, "message": friendly_message(error)},
    )
