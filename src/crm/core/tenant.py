"""Tenant context propagation via Python contextvars.

Every CRM document lives under ``tenants/{tenantId}/...`` in Firestore. The
TenantContext is set by middleware at the start of each request and is
accessible anywhere in the call stack via get_current_tenant(). Repositories,
the Redis wrapper, and callable-function payloads use it to scope work to
the correct tenant.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request."""

    tenant_id: str

    @property
    def root_path(self) -> str:
        """Firestore document path of the tenant, e.g. ``tenants/acme``."""
        return tenant_path(self.tenant_id)


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current request.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped request).
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- request is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


def reset_tenant_context(token: contextvars.Token[TenantContext]) -> None:
    """Restore the context that was active before set_tenant_context()."""
    _tenant_context.reset(token)


def tenant_path(tenant_id: str, *segments: str) -> str:
    """Build a tenant-scoped Firestore path.

    >>> tenant_path("acme", "crm_companies", "c1", "locations")
    'tenants/acme/crm_companies/c1/locations'
    """
    if not tenant_id:
        raise ValueError("tenant_id is required")
    return "/".join(("tenants", tenant_id, *segments))


# ── Paths that skip tenant resolution ───────────────────────────────────────

SKIP_TENANT_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
)
