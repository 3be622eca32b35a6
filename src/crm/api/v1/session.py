"""REST API endpoints for the per-user CRM navigation cache.

``POST /session/navigation`` starts a session (on login), optionally seeded
from shareable URL parameters; ``DELETE`` clears it (on logout).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict

from src.crm.api.deps import CurrentUser, get_current_user, get_redis
from src.crm.config import get_settings
from src.crm.core.redis import TenantRedis
from src.crm.core.session import (
    CRMSessionCache,
    CRMTab,
    NavigationState,
    OwnershipFilter,
    tab_from_param,
)

router = APIRouter(prefix="/session", tags=["session"])


class NavigationUpdate(BaseModel):
    """Partial update; omitted fields keep their cached value."""

    model_config = ConfigDict(extra="forbid")

    active_tab: CRMTab | None = None
    company_filter: OwnershipFilter | None = None
    contact_filter: OwnershipFilter | None = None
    deal_filter: OwnershipFilter | None = None
    search_term: str | None = None
    company_state: str | None = None
    contact_state: str | None = None


class NavigationResponse(NavigationState):
    query_params: dict[str, str]


def _cache(redis: TenantRedis, user: CurrentUser) -> CRMSessionCache:
    return CRMSessionCache(redis, user.id, ttl_seconds=get_settings().SESSION_CACHE_TTL_SECONDS)


def _response(state: NavigationState) -> NavigationResponse:
    return NavigationResponse(**state.model_dump(), query_params=state.to_query_params())


@router.post("/navigation", response_model=NavigationResponse, status_code=status.HTTP_201_CREATED)
async def start_navigation(
    tab: str | None = Query(None),
    company_state: str | None = Query(None, alias="companyState"),
    contact_state: str | None = Query(None, alias="contactState"),
    user: CurrentUser = Depends(get_current_user),
    redis: TenantRedis = Depends(get_redis),
) -> NavigationResponse:
    initial = NavigationState(
        active_tab=tab_from_param(tab),
        company_state=company_state or None,
        contact_state=contact_state or None,
    )
    return _response(await _cache(redis, user).start(initial))


@router.get("/navigation", response_model=NavigationResponse)
async def get_navigation(
    user: CurrentUser = Depends(get_current_user),
    redis: TenantRedis = Depends(get_redis),
) -> NavigationResponse:
    return _response(await _cache(redis, user).get())


@router.put("/navigation", response_model=NavigationResponse)
async def update_navigation(
    body: NavigationUpdate,
    user: CurrentUser = Depends(get_current_user),
    redis: TenantRedis = Depends(get_redis),
) -> NavigationResponse:
    # Only the state filters can be cleared with an explicit null
    updates: dict[str, Any] = {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in ("company_state", "contact_state")
    }
    return _response(await _cache(redis, user).save(updates))


@router.delete("/navigation", status_code=status.HTTP_204_NO_CONTENT)
async def clear_navigation(
    user: CurrentUser = Depends(get_current_user),
    redis: TenantRedis = Depends(get_redis),
) -> None:
    await _cache(redis, user).clear()
