"""REST API endpoints for the context engine (global context and scenarios)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from src.crm.api.deps import (
    CurrentUser,
    functions_http_error,
    get_current_user,
    get_functions_client,
)
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError

router = APIRouter(prefix="/context", tags=["context"])


@router.get("", response_model=dict[str, Any])
async def get_global_context(
    user: CurrentUser = Depends(get_current_user),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> dict[str, Any]:
    try:
        return await functions.get_global_context()
    except FunctionsError as e:
        raise functions_http_error(e)


@router.put("", response_model=dict[str, Any])
async def set_global_context(
    body: dict[str, Any],
    user: CurrentUser = Depends(get_current_user),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> dict[str, Any]:
    try:
        await functions.set_global_context(body, user.id)
    except FunctionsError as e:
        raise functions_http_error(e)
    return body


@router.get("/scenarios", response_model=list[dict[str, Any]])
async def list_scenarios(
    user: CurrentUser = Depends(get_current_user),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> list[dict[str, Any]]:
    try:
        return await functions.list_scenarios()
    except FunctionsError as e:
        raise functions_http_error(e)


@router.put("/scenarios/{scenario_id}", response_model=dict[str, Any])
async def set_scenario(
    scenario_id: str,
    body: dict[str, Any],
    user: CurrentUser = Depends(get_current_user),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> dict[str, Any]:
    try:
        await functions.set_scenario(scenario_id, body, user.id)
    except FunctionsError as e:
        raise functions_http_error(e)
    return body
