"""Unit tests for observability: Prometheus metrics, Sentry tagging, health routes.

Tests cover:
- App factory serves /health and /metrics without a tenant
- MetricsMiddleware counts requests per tenant
- Callable-function metrics by outcome
- Readiness reports degraded dependencies
- Sentry before_send tags the current tenant
- Settings derive the functions base URL
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from src.crm.config import Settings
from src.crm.core.monitoring import init_sentry
from src.crm.core.tenant import TenantContext, reset_tenant_context, set_tenant_context
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError
from src.crm.main import create_app


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


async def _get(path: str, headers: dict | None = None) -> httpx.Response:
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        return await ac.get(path, headers=headers or {})


# ── App factory ──────────────────────────────────────────────────────────────


class TestAppFactory:
    @pytest.mark.asyncio
    async def test_health_without_tenant(self) -> None:
        response = await _get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_metrics_exposition(self) -> None:
        await _get("/health")

        response = await _get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    @pytest.mark.asyncio
    async def test_api_requires_tenant(self) -> None:
        response = await _get("/api/v1/companies")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_requests_counted_per_tenant(self) -> None:
        labels = {"method": "GET", "endpoint": "/api/v1/companies", "status_code": "401", "tenant_id": "metrics-co"}
        before = _sample("http_requests_total", **labels)

        await _get("/api/v1/companies", {"X-Tenant-ID": "metrics-co"})

        assert _sample("http_requests_total", **labels) == before + 1

    @pytest.mark.asyncio
    async def test_path_parameters_labelled_by_name(self) -> None:
        labels = {
            "method": "GET",
            "endpoint": "/api/v1/companies/{company_id}/association",
            "status_code": "401",
            "tenant_id": "metrics-co",
        }
        before = _sample("http_requests_total", **labels)

        await _get("/api/v1/companies/c7/association", {"X-Tenant-ID": "metrics-co"})

        assert _sample("http_requests_total", **labels) == before + 1
        assert _sample(
            "http_requests_total",
            method="GET",
            endpoint="/api/v1/companies/c7/association",
            status_code="401",
            tenant_id="metrics-co",
        ) == 0.0


class TestReadiness:
    @pytest.mark.asyncio
    async def test_degraded_when_dependencies_fail(self) -> None:
        firestore = MagicMock()
        firestore.collection.side_effect = RuntimeError("no credentials")
        redis = MagicMock()
        redis.ping = MagicMock(side_effect=ConnectionError("refused"))

        with (
            patch("src.crm.api.v1.health.get_firestore_client", return_value=firestore),
            patch("src.crm.api.v1.health.get_redis_pool", return_value=redis),
        ):
            response = await _get("/health/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "degraded"
        assert body["checks"]["firestore"] == "error"
        assert body["checks"]["redis"] == "error"


# ── Callable-function metrics ────────────────────────────────────────────────


class TestFunctionMetrics:
    @pytest.mark.asyncio
    async def test_outcomes_counted(self) -> None:
        responses = iter(
            [
                httpx.Response(200, json={"result": 1}),
                httpx.Response(404, json={"error": {"status": "NOT_FOUND", "message": "x"}}),
            ]
        )
        client = CloudFunctionsClient(
            "https://fn.test", transport=httpx.MockTransport(lambda r: next(responses))
        )
        ok_before = _sample("functions_calls_total", function="metricsProbe", status="ok")
        nf_before = _sample("functions_calls_total", function="metricsProbe", status="not-found")

        await client.call("metricsProbe")
        with pytest.raises(FunctionsError):
            await client.call("metricsProbe")

        assert _sample("functions_calls_total", function="metricsProbe", status="ok") == ok_before + 1
        assert _sample("functions_calls_total", function="metricsProbe", status="not-found") == nf_before + 1


# ── Sentry ───────────────────────────────────────────────────────────────────


class TestSentry:
    def test_before_send_tags_tenant(self) -> None:
        with patch("src.crm.core.monitoring.sentry_sdk.init") as init:
            init_sentry(dsn="https://key@sentry.example/1", environment="production")

        kwargs = init.call_args.kwargs
        assert kwargs["traces_sample_rate"] == 0.1
        before_send = kwargs["before_send"]

        token = set_tenant_context(TenantContext(tenant_id="acme"))
        try:
            event = before_send({}, {})
        finally:
            reset_tenant_context(token)
        assert event["tags"]["tenant_id"] == "acme"

        assert "tags" not in before_send({}, {})


# ── Settings ─────────────────────────────────────────────────────────────────


class TestSettings:
    def test_derived_functions_url(self) -> None:
        settings = Settings(GCP_PROJECT_ID="demo", FIREBASE_FUNCTIONS_REGION="europe-west1")
        assert settings.get_functions_base_url() == "https://europe-west1-demo.cloudfunctions.net"

    def test_explicit_functions_url(self) -> None:
        settings = Settings(FIREBASE_FUNCTIONS_BASE_URL="http://localhost:5001/demo/us-central1/")
        assert settings.get_functions_base_url() == "http://localhost:5001/demo/us-central1"
