"""Prometheus metrics and Sentry wiring for the CRM API.

HTTP requests are counted per URL template and tenant. Calls to the
Firebase callable functions get their own counter and latency histogram,
labelled with the function name and the outcome (``ok`` or the callable
error code such as ``not-found``).
"""

from __future__ import annotations

import time

import sentry_sdk
from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.crm.core.tenant import get_current_tenant

# ── HTTP ─────────────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code", "tenant_id"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "tenant_id"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Callable functions ───────────────────────────────────────────────────────

functions_calls_total = Counter(
    "functions_calls_total",
    "Firebase callable function invocations by outcome",
    ["function", "status"],
)

functions_call_duration_seconds = Histogram(
    "functions_call_duration_seconds",
    "Firebase callable function latency in seconds",
    ["function"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def _endpoint_label(request: Request) -> str:
    """URL path with matched path parameters put back as ``{name}``.

    ``/api/v1/companies/c1/association`` is counted as
    ``/api/v1/companies/{company_id}/association`` rather than one series
    per company. Unmatched requests keep their raw path.
    """
    path = request.url.path
    params = request.scope.get("path_params") or {}
    if not params:
        return path
    names = {str(value): name for name, value in params.items()}
    return "/".join(
        f"{{{names[segment]}}}" if segment in names else segment for segment in path.split("/")
    )


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request count and duration; /metrics itself is not counted.

    The tenant label comes from request.state.tenant_id, which the tenant
    middleware sets further in.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        endpoint = _endpoint_label(request)
        tenant_id = getattr(request.state, "tenant_id", None) or "unknown"
        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
            tenant_id=tenant_id,
        ).inc()
        http_request_duration_seconds.labels(
            method=request.method, endpoint=endpoint, tenant_id=tenant_id
        ).observe(elapsed)
        return response


# ── Sentry ───────────────────────────────────────────────────────────────────


def _tag_tenant(event: dict, hint: dict) -> dict:
    try:
        tenant_id = get_current_tenant().tenant_id
    except RuntimeError:
        return event
    event.setdefault("tags", {})["tenant_id"] = tenant_id
    return event


def init_sentry(dsn: str, environment: str) -> None:
    """Start Sentry; production samples 10% of traces, other environments all."""
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[StarletteIntegration(), FastApiIntegration()],
        before_send=_tag_tenant,
    )


def get_metrics_response() -> Response:
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
