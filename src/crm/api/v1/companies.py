"""REST API endpoints for companies.

Lists companies (all, or the caller's via salesperson associations),
reports association diagnostics, and serves pipeline totals rolled up from
deals to locations, divisions, and the company.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.crm.api.deps import (
    CurrentUser,
    get_current_user,
    get_functions_client,
    get_tenant,
    functions_http_error,
    require_state,
)
from src.crm.associations.refs import salesperson_ids
from src.crm.associations.resolver import (
    AssociationStatus,
    association_status,
    get_user_associated_companies,
)
from src.crm.core.tenant import TenantContext
from src.crm.deals.totals import CompanyTotals, cached_company_totals, compute_company_totals
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError
from src.crm.repositories.base import EntityNotFoundError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/companies", tags=["companies"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class CompanyResponse(BaseModel):
    id: str
    company_name: str | None = None
    industry: str | None = None
    city: str | None = None
    state: str | None = None
    salesperson_ids: list[str] = Field(default_factory=list)


class CompanyListResponse(BaseModel):
    companies: list[CompanyResponse] = Field(default_factory=list)
    total: int = 0


class MaintenanceResponse(BaseModel):
    """Result of a server-side maintenance function, passed through."""

    result: Any = None


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_company_repository(request: Request) -> Any:
    return require_state(request, "company_repository", "Company repository")


def _get_deal_repository(request: Request) -> Any:
    return require_state(request, "deal_repository", "Deal repository")


def _company_to_response(company: dict[str, Any]) -> CompanyResponse:
    return CompanyResponse(
        id=company["id"],
        company_name=company.get("companyName") or company.get("name"),
        industry=company.get("industry"),
        city=company.get("city"),
        state=company.get("state"),
        salesperson_ids=salesperson_ids(company),
    )


async def _require_company(repo: Any, tenant_id: str, company_id: str) -> dict[str, Any]:
    try:
        return await repo.require(tenant_id, company_id)
    except EntityNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Company {company_id} not found",
        )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=CompanyListResponse)
async def list_companies(
    request: Request,
    mine: bool = Query(False, description="Only companies associated with the caller"),
    state: str | None = Query(None, description="Only companies with a location in this state"),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> CompanyListResponse:
    repo = _get_company_repository(request)
    if state:
        companies = await repo.list_by_state(tenant.tenant_id, state)
    else:
        companies = await repo.list(tenant.tenant_id)
    if mine:
        companies = get_user_associated_companies(companies, user.id)

    return CompanyListResponse(
        companies=[_company_to_response(c) for c in companies],
        total=len(companies),
    )


@router.get("/{company_id}/association", response_model=AssociationStatus)
async def get_company_association(
    company_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> AssociationStatus:
    """Every source linking the company to the caller."""
    company = await _require_company(_get_company_repository(request), tenant.tenant_id, company_id)
    return association_status(company, user.id)


@router.get("/{company_id}/pipeline-totals", response_model=CompanyTotals)
async def get_pipeline_totals(
    company_id: str,
    request: Request,
    refresh: bool = Query(False, description="Recompute from deals and store on the company"),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> CompanyTotals:
    """Cached totals from the company document, else computed from its deals.

    With ``refresh=true`` the totals are always recomputed and written back.
    """
    companies = _get_company_repository(request)
    deals_repo = _get_deal_repository(request)
    company = await _require_company(companies, tenant.tenant_id, company_id)

    if not refresh:
        cached = cached_company_totals(company)
        if cached is not None:
            return cached

    deals = await deals_repo.list_for_company(tenant.tenant_id, company_id)
    locations = await companies.list_locations(tenant.tenant_id, company_id)
    totals = compute_company_totals(deals, locations)
    if not refresh:
        return totals

    await companies.update_totals(tenant.tenant_id, company_id, totals.to_document())
    logger.info(
        "company_totals_refreshed",
        tenant_id=tenant.tenant_id,
        company_id=company_id,
        deal_count=totals.pipeline_value.deal_count + totals.closed_value.deal_count,
    )
    return totals


@router.post("/{company_id}/pipeline-totals/recalculate", response_model=MaintenanceResponse)
async def recalculate_pipeline_totals(
    company_id: str,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> MaintenanceResponse:
    """Ask the updateCompanyPipelineTotals function to recompute server-side."""
    try:
        result = await functions.update_company_pipeline_totals(tenant.tenant_id, company_id)
    except FunctionsError as e:
        raise functions_http_error(e)
    return MaintenanceResponse(result=result)


@router.post("/deduplicate", response_model=MaintenanceResponse)
async def deduplicate_companies(
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> MaintenanceResponse:
    try:
        result = await functions.delete_duplicate_companies(tenant.tenant_id)
    except FunctionsError as e:
        raise functions_http_error(e)
    logger.info("companies_deduplicated", tenant_id=tenant.tenant_id, user_id=user.id)
    return MaintenanceResponse(result=result)
