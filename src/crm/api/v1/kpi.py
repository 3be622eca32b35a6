"""REST API endpoints for the salesperson KPI dashboard."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from src.crm.api.deps import CurrentUser, get_current_user, get_tenant, require_state
from src.crm.core.tenant import TenantContext
from src.crm.kpi.dashboard import KPIActivityCreate, KPIDashboard, build_kpi_dashboard
from src.crm.repositories.base import EntityNotFoundError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/kpi", tags=["kpi"])


class ActivityLoggedResponse(BaseModel):
    id: str


@router.get("/dashboard", response_model=KPIDashboard | None)
async def get_dashboard(
    request: Request,
    salesperson: str | None = Query(None, description="Salesperson uid; defaults to the caller"),
    period: str | None = Query(None, description="ISO date; defaults to today"),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> KPIDashboard | None:
    """Progress per active assignment. ``null`` when nothing is assigned."""
    salesperson_id = salesperson or user.id
    assignments = require_state(request, "kpi_assignment_repository", "KPI repositories")
    tracking = require_state(request, "kpi_tracking_repository", "KPI repositories")
    suggestions = require_state(request, "kpi_suggestion_repository", "KPI repositories")

    return build_kpi_dashboard(
        salesperson_id,
        await assignments.list_active(tenant.tenant_id, salesperson_id),
        await tracking.list_for_salesperson(tenant.tenant_id, salesperson_id),
        await suggestions.list_for_salesperson(tenant.tenant_id, salesperson_id),
        period=period,
    )


@router.post("/activities", response_model=ActivityLoggedResponse, status_code=status.HTTP_201_CREATED)
async def log_activity(
    body: KPIActivityCreate,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> ActivityLoggedResponse:
    """Log work against a KPI; today's tracking row is bumped by ``value``."""
    activities = require_state(request, "kpi_activity_repository", "KPI repositories")
    tracking = require_state(request, "kpi_tracking_repository", "KPI repositories")
    activity_id = await activities.log(tenant.tenant_id, user.id, body, tracking)
    logger.info(
        "kpi_activity_logged",
        tenant_id=tenant.tenant_id,
        salesperson_id=user.id,
        kpi_id=body.kpi_id,
        value=body.value,
    )
    return ActivityLoggedResponse(id=activity_id)


@router.post("/suggestions/{suggestion_id}/{action}", status_code=status.HTTP_204_NO_CONTENT)
async def update_suggestion(
    suggestion_id: str,
    action: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> None:
    """``accept`` or ``complete`` a suggested task."""
    suggestions = require_state(request, "kpi_suggestion_repository", "KPI repositories")
    handlers = {"accept": suggestions.accept, "complete": suggestions.complete}
    handler = handlers.get(action)
    if handler is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown suggestion action: {action}",
        )
    try:
        await handler(tenant.tenant_id, suggestion_id)
    except EntityNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Suggestion {suggestion_id} not found",
        )
