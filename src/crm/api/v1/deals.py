"""REST API endpoints for deals: listing, value estimates, and health.

Stage probabilities come from the tenant's ``crm_pipeline_stages`` (or the
default catalogue); a deal's stored stage is canonicalized onto them before
its probability is used.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from src.crm.api.deps import CurrentUser, get_current_user, get_tenant, require_state
from src.crm.associations.resolver import is_deal_associated_with_user
from src.crm.core.dates import utcnow
from src.crm.core.tenant import TenantContext
from src.crm.deals.health import DealHealthScore, DealHealthScorer
from src.crm.deals.stages import PipelineStage, canonicalize_stage
from src.crm.deals.valuation import (
    RevenueRange,
    deal_sort_value,
    estimate_revenue_range,
    get_deal_close_date,
    get_deal_estimated_value,
    get_deal_value_for_pipeline,
)
from src.crm.repositories.base import EntityNotFoundError

router = APIRouter(prefix="/deals", tags=["deals"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class DealResponse(BaseModel):
    id: str
    name: str | None = None
    company_name: str | None = None
    stage: str | None = None
    stage_color: str | None = None
    estimated_value: str = "-"
    pipeline_value: float = 0.0
    probability: int = 0
    health: str = "red"
    close_date: str | None = None


class DealListResponse(BaseModel):
    deals: list[DealResponse]
    total: int


class DealValueResponse(BaseModel):
    deal_id: str
    estimated_value: str
    pipeline_value: float
    revenue_range: RevenueRange | None = None
    close_date: str | None = None


class DealHealthResponse(DealHealthScore):
    deal_id: str
    stage: str | None = None
    stage_probability: float | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _get_deal_repository(request: Request) -> Any:
    return require_state(request, "deal_repository", "Deal repository")


async def _load_stages(request: Request, tenant_id: str) -> list[PipelineStage]:
    repo = require_state(request, "pipeline_stage_repository", "Pipeline stage repository")
    return await repo.list_stages(tenant_id)


async def _require_deal(request: Request, tenant_id: str, deal_id: str) -> dict[str, Any]:
    try:
        return await _get_deal_repository(request).require(tenant_id, deal_id)
    except EntityNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Deal {deal_id} not found",
        )


def _matches_search(deal: dict[str, Any], term: str) -> bool:
    haystack = " ".join(
        str(deal.get(field) or "") for field in ("name", "companyName", "stage")
    ).lower()
    return term in haystack


def _deal_to_response(
    deal: dict[str, Any],
    stages: list[PipelineStage],
    scorer: DealHealthScorer,
) -> DealResponse:
    stage = canonicalize_stage(deal.get("stage"), stages)
    score = scorer.score(deal, stage.probability if stage else None, utcnow())
    close_date = get_deal_close_date(deal)
    return DealResponse(
        id=deal["id"],
        name=deal.get("name"),
        company_name=deal.get("companyName"),
        stage=stage.name if stage else deal.get("stage"),
        stage_color=stage.color if stage else None,
        estimated_value=get_deal_estimated_value(deal),
        pipeline_value=get_deal_value_for_pipeline(deal),
        probability=score.probability,
        health=score.health,
        close_date=close_date.isoformat() if close_date else None,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=DealListResponse)
async def list_deals(
    request: Request,
    salesperson: str | None = Query(None, description="Salesperson uid, or 'me'"),
    search: str | None = Query(None, description="Case-insensitive match on name, company, stage"),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> DealListResponse:
    """Deals sorted by the low end of their value, largest first."""
    deals = await _get_deal_repository(request).list(tenant.tenant_id)

    if salesperson:
        uid = user.id if salesperson == "me" else salesperson
        deals = [d for d in deals if is_deal_associated_with_user(d, uid)]
    term = (search or "").strip().lower()
    if term:
        deals = [d for d in deals if _matches_search(d, term)]

    deals.sort(key=deal_sort_value, reverse=True)
    stages = await _load_stages(request, tenant.tenant_id)
    scorer = DealHealthScorer()
    return DealListResponse(
        deals=[_deal_to_response(d, stages, scorer) for d in deals],
        total=len(deals),
    )


@router.get("/{deal_id}/value", response_model=DealValueResponse)
async def get_deal_value(
    deal_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> DealValueResponse:
    deal = await _require_deal(request, tenant.tenant_id, deal_id)
    close_date = get_deal_close_date(deal)
    return DealValueResponse(
        deal_id=deal_id,
        estimated_value=get_deal_estimated_value(deal),
        pipeline_value=get_deal_value_for_pipeline(deal),
        revenue_range=estimate_revenue_range(deal),
        close_date=close_date.isoformat() if close_date else None,
    )


@router.get("/{deal_id}/health", response_model=DealHealthResponse)
async def get_deal_health(
    deal_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> DealHealthResponse:
    deal = await _require_deal(request, tenant.tenant_id, deal_id)
    stages = await _load_stages(request, tenant.tenant_id)
    stage = canonicalize_stage(deal.get("stage"), stages)
    stage_probability = stage.probability if stage else None

    score = DealHealthScorer().score(deal, stage_probability, utcnow())
    return DealHealthResponse(
        **score.model_dump(),
        deal_id=deal_id,
        stage=stage.name if stage else deal.get("stage"),
        stage_probability=stage_probability,
    )
