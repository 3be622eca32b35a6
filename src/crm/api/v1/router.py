"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.crm.api.v1 import (
    associations,
    calendar,
    companies,
    contacts,
    context,
    deals,
    email_templates,
    health,
    kpi,
    pipeline,
    prospecting,
    session,
)

API_PREFIX = "/api/v1"

router = APIRouter()

# Infrastructure routes stay outside the versioned prefix
router.include_router(health.router)

for module in (
    companies,
    contacts,
    associations,
    deals,
    pipeline,
    calendar,
    session,
    kpi,
    email_templates,
    prospecting,
    context,
):
    router.include_router(module.router, prefix=API_PREFIX)
