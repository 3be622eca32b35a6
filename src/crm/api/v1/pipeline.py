"""REST API endpoints for pipeline charts (funnel and bubble) and the stage list."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src.crm.api.deps import CurrentUser, get_current_user, get_tenant, require_state
from src.crm.associations.resolver import get_user_associated_deals
from src.crm.core.tenant import TenantContext
from src.crm.deals.pipeline import BubblePoint, FunnelMode, FunnelStage, build_bubble_chart, build_funnel
from src.crm.deals.stages import PipelineStage

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


class StageResponse(BaseModel):
    id: str
    name: str
    probability: float
    order: int
    color: str


async def _load(request: Request, tenant_id: str, user_id: str, mine: bool):
    deals_repo = require_state(request, "deal_repository", "Deal repository")
    stages_repo = require_state(request, "pipeline_stage_repository", "Pipeline stage repository")
    deals = await deals_repo.list(tenant_id)
    if mine:
        deals = get_user_associated_deals(deals, user_id)
    stages: list[PipelineStage] = await stages_repo.list_stages(tenant_id)
    return deals, stages


@router.get("/stages", response_model=list[StageResponse])
async def list_stages(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> list[StageResponse]:
    stages_repo = require_state(request, "pipeline_stage_repository", "Pipeline stage repository")
    stages = await stages_repo.list_stages(tenant.tenant_id)
    return [StageResponse(**s.model_dump(), color=s.color) for s in stages]


@router.get("/funnel", response_model=list[FunnelStage])
async def get_funnel(
    request: Request,
    mode: FunnelMode = Query("count"),
    mine: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> list[FunnelStage]:
    deals, stages = await _load(request, tenant.tenant_id, user.id, mine)
    return build_funnel(deals, stages, mode)


@router.get("/bubble", response_model=list[BubblePoint])
async def get_bubble_chart(
    request: Request,
    mine: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> list[BubblePoint]:
    deals, stages = await _load(request, tenant.tenant_id, user.id, mine)
    return build_bubble_chart(deals, stages)
