"""REST API endpoints for entity links and the tenant's sales team."""

from __future__ import annotations

from typing import Any, Literal

import structlog
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from src.crm.api.deps import (
    CurrentUser,
    functions_http_error,
    get_current_user,
    get_functions_client,
    get_tenant,
    require_state,
)
from src.crm.associations.team import SalesTeamDirectory
from src.crm.config import get_settings
from src.crm.core.tenant import TenantContext
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["associations"])

EntityType = Literal["company", "contact", "deal", "salesperson", "location"]


class AssociationChangeRequest(BaseModel):
    action: Literal["add", "remove"]
    source_type: EntityType
    source_id: str
    target_type: EntityType
    target_id: str


class AssociationChangeResponse(BaseModel):
    result: Any = None


class SalespersonResponse(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None


class SalesTeamResponse(BaseModel):
    salespeople: list[SalespersonResponse] = Field(default_factory=list)
    reload_pending: bool = False


def _get_sales_team(request: Request, tenant_id: str) -> SalesTeamDirectory:
    """Per-tenant directory, created on first use with the service client."""
    teams: dict[str, SalesTeamDirectory] = require_state(request, "sales_teams", "Sales team directory")
    team = teams.get(tenant_id)
    if team is None:
        functions = require_state(request, "functions_client", "Cloud Functions client")
        team = SalesTeamDirectory(
            tenant_id,
            functions,
            reload_delay_seconds=get_settings().SALES_TEAM_RELOAD_DEBOUNCE_SECONDS,
        )
        teams[tenant_id] = team
    return team


@router.post("/associations", response_model=AssociationChangeResponse)
async def change_association(
    body: AssociationChangeRequest,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> AssociationChangeResponse:
    """Add or remove a link through the manageAssociations function."""
    try:
        result = await functions.manage_associations(
            tenant.tenant_id,
            body.action,
            body.source_type,
            body.source_id,
            body.target_type,
            body.target_id,
        )
    except FunctionsError as e:
        raise functions_http_error(e)

    logger.info(
        "association_changed",
        tenant_id=tenant.tenant_id,
        user_id=user.id,
        action=body.action,
        source=f"{body.source_type}:{body.source_id}",
        target=f"{body.target_type}:{body.target_id}",
    )
    return AssociationChangeResponse(result=result)


@router.get("/sales-team", response_model=SalesTeamResponse)
async def get_sales_team(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> SalesTeamResponse:
    team = _get_sales_team(request, tenant.tenant_id)
    try:
        people = await team.salespeople()
    except FunctionsError as e:
        raise functions_http_error(e)
    return SalesTeamResponse(
        salespeople=[
            SalespersonResponse(
                id=str(p.get("id") or p.get("uid")),
                name=p.get("name") or p.get("displayName"),
                email=p.get("email"),
            )
            for p in people
        ],
        reload_pending=team.reload_pending,
    )


@router.post("/sales-team/reload", status_code=status.HTTP_202_ACCEPTED, response_model=SalesTeamResponse)
async def reload_sales_team(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> SalesTeamResponse:
    """Schedule a debounced reload; bursts of requests collapse into one call."""
    team = _get_sales_team(request, tenant.tenant_id)
    team.request_reload()
    return SalesTeamResponse(reload_pending=team.reload_pending)
