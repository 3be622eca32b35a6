"""REST API endpoints for AI prospecting.

Searches run server-side in the runProspecting function; this router
forwards requests and lists the caller's saved searches from Firestore.
"""

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
from src.crm.core.tenant import TenantContext
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/prospecting", tags=["prospecting"])


class ProspectingRunRequest(BaseModel):
    prompt: str = Field(min_length=1)
    filters: dict[str, Any] = Field(default_factory=dict)


class SaveSearchRequest(ProspectingRunRequest):
    name: str = Field(min_length=1)
    visibility: Literal["private", "team", "company"] = "private"


class ResultIdsRequest(BaseModel):
    result_ids: list[str] = Field(min_length=1)


class CallListRequest(ResultIdsRequest):
    assign_to: str | None = None


class FunctionResultResponse(BaseModel):
    result: Any = None


@router.get("/searches", response_model=list[dict[str, Any]])
async def list_saved_searches(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> list[dict[str, Any]]:
    repo = require_state(request, "prospecting_search_repository", "Prospecting repository")
    return await repo.list_for_user(tenant.tenant_id, user.id)


@router.post("/run", response_model=FunctionResultResponse)
async def run_search(
    body: ProspectingRunRequest,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> FunctionResultResponse:
    try:
        result = await functions.run_prospecting(tenant.tenant_id, body.prompt, body.filters)
    except FunctionsError as e:
        raise functions_http_error(e)
    logger.info("prospecting_run", tenant_id=tenant.tenant_id, user_id=user.id)
    return FunctionResultResponse(result=result)


@router.post("/searches", response_model=FunctionResultResponse, status_code=status.HTTP_201_CREATED)
async def save_search(
    body: SaveSearchRequest,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> FunctionResultResponse:
    try:
        result = await functions.save_prospecting_search(
            tenant.tenant_id, body.name, body.prompt, body.filters, body.visibility
        )
    except FunctionsError as e:
        raise functions_http_error(e)
    return FunctionResultResponse(result=result)


@router.post("/add-to-crm", response_model=FunctionResultResponse)
async def add_to_crm(
    body: ResultIdsRequest,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> FunctionResultResponse:
    try:
        result = await functions.add_prospects_to_crm(tenant.tenant_id, body.result_ids)
    except FunctionsError as e:
        raise functions_http_error(e)
    logger.info("prospects_added", tenant_id=tenant.tenant_id, count=len(body.result_ids))
    return FunctionResultResponse(result=result)


@router.post("/call-list", response_model=FunctionResultResponse)
async def create_call_list(
    body: CallListRequest,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> FunctionResultResponse:
    """Turn prospect results into a call list, assigned to the caller by default."""
    try:
        result = await functions.create_call_list(
            tenant.tenant_id, body.result_ids, body.assign_to or user.id
        )
    except FunctionsError as e:
        raise functions_http_error(e)
    return FunctionResultResponse(result=result)
