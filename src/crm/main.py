"""FastAPI application factory.

Creates the app with tenant middleware, logging middleware, metrics middleware,
CORS, Sentry, lifespan events that wire the Firestore repositories and the
callable-functions client onto app.state, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.crm.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.crm.api.middleware.tenant import TenantAuthMiddleware
from src.crm.api.v1.router import router as v1_router
from src.crm.config import get_settings
from src.crm.core.firestore import close_firestore
from src.crm.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.crm.core.redis import close_redis
from src.crm.functions.client import CloudFunctionsClient
from src.crm.repositories.activity import ActivityRepository, TaskRepository
from src.crm.repositories.content import EmailTemplateRepository, ProspectingSearchRepository
from src.crm.repositories.crm import (
    CompanyRepository,
    ContactRepository,
    DealRepository,
    PipelineStageRepository,
)
from src.crm.repositories.kpi import (
    KPIActivityRepository,
    KPIAssignmentRepository,
    KPISuggestionRepository,
    KPITrackingRepository,
)

# app.state attribute -> repository class
REPOSITORIES = {
    "contact_repository": ContactRepository,
    "company_repository": CompanyRepository,
    "deal_repository": DealRepository,
    "pipeline_stage_repository": PipelineStageRepository,
    "task_repository": TaskRepository,
    "activity_repository": ActivityRepository,
    "kpi_assignment_repository": KPIAssignmentRepository,
    "kpi_tracking_repository": KPITrackingRepository,
    "kpi_suggestion_repository": KPISuggestionRepository,
    "kpi_activity_repository": KPIActivityRepository,
    "email_template_repository": EmailTemplateRepository,
    "prospecting_search_repository": ProspectingSearchRepository,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire services and Sentry on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # Repositories open the Firestore client lazily, on first query
    for attr, repository_cls in REPOSITORIES.items():
        setattr(app.state, attr, repository_cls())
    log.info("crm.repositories_initialized", count=len(REPOSITORIES))

    try:
        app.state.functions_client = CloudFunctionsClient.from_settings()
        app.state.sales_teams = {}
        log.info("crm.functions_client_initialized", base_url=settings.get_functions_base_url())
    except Exception as exc:
        log.warning("crm.functions_client_init_failed", error=str(exc))
        app.state.functions_client = None
        app.state.sales_teams = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    for team in (getattr(app.state, "sales_teams", None) or {}).values():
        team.close()

    close_firestore()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Staffing CRM API",
        version="0.1.0",
        description="Multi-tenant CRM backend for staffing sales teams",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves tenant context from JWT/header)
    app.add_middleware(TenantAuthMiddleware)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
