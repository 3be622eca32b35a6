"""Async client for Firebase callable functions.

Speaks the callable wire protocol over HTTPS:

    POST {base_url}/{name}
    Authorization: Bearer <Firebase ID token>      (optional)
    {"data": <payload>}

    200 {"result": <value>}
    4xx/5xx {"error": {"status": "PERMISSION_DENIED", "message": "..."}}

The functions themselves are opaque JSON-in/JSON-out collaborators. Calls
are made exactly once: there is no retry, backoff, or circuit breaking.
Every failure surfaces as FunctionsError.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from src.crm.config import get_settings
from src.crm.core.dates import utcnow
from src.crm.core.monitoring import functions_call_duration_seconds, functions_calls_total
from src.crm.functions.errors import FunctionsError

logger = structlog.get_logger(__name__)

CLEANUP_ASSOCIATIONS_ENDPOINT = "cleanupContactCompanyAssociationsHttp"


def _isoformat(value: datetime) -> str:
    # JS Date.toISOString(): millisecond precision, Z suffix
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _unwrap(name: str, result: Any, key: str, default: Any) -> Any:
    """``result[key]`` of an object result; a non-object result is a protocol error."""
    if result is None:
        return default
    if not isinstance(result, Mapping):
        raise FunctionsError(
            "internal", f"Expected an object result, got {type(result).__name__}", function=name
        )
    return result.get(key) or default


class CloudFunctionsClient:
    """Invoke callable functions by name.

    Args:
        base_url: Functions origin, e.g. ``https://us-central1-proj.cloudfunctions.net``.
        timeout: Request timeout in seconds.
        id_token: Default Firebase ID token sent as a bearer token.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        id_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._id_token = id_token
        self._transport = transport

    @classmethod
    def from_settings(cls, id_token: str | None = None) -> CloudFunctionsClient:
        settings = get_settings()
        return cls(
            settings.get_functions_base_url(),
            timeout=settings.FUNCTIONS_TIMEOUT,
            id_token=id_token,
        )

    def with_token(self, id_token: str | None) -> CloudFunctionsClient:
        """Copy of this client that authenticates as another user."""
        return CloudFunctionsClient(
            self._base_url,
            timeout=self._timeout,
            id_token=id_token,
            transport=self._transport,
        )

    def _client(self, id_token: str | None) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        token = id_token or self._id_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return httpx.AsyncClient(headers=headers, timeout=self._timeout, transport=self._transport)

    # ── Core call ────────────────────────────────────────────────────────

    async def call(
        self,
        name: str,
        payload: dict[str, Any] | None = None,
        *,
        id_token: str | None = None,
    ) -> Any:
        """Invoke callable ``name`` and return its ``result``.

        Raises:
            FunctionsError: On transport failure, non-2xx status, error body,
                or a response without ``result``.
        """
        start = time.perf_counter()
        status = "error"
        try:
            async with self._client(id_token) as client:
                try:
                    response = await client.post(f"{self._base_url}/{name}", json={"data": payload or {}})
                except httpx.TimeoutException as e:
                    raise FunctionsError("deadline-exceeded", str(e) or "Request timed out", function=name) from e
                except httpx.HTTPError as e:
                    raise FunctionsError("unavailable", str(e) or "Network error", function=name) from e

            result = self._parse(name, response)
            status = "ok"
            return result
        except FunctionsError as e:
            status = e.code.removeprefix("functions/")
            logger.warning("functions_call_failed", function=name, code=e.code, message=e.message)
            raise
        finally:
            functions_calls_total.labels(function=name, status=status).inc()
            functions_call_duration_seconds.labels(function=name).observe(time.perf_counter() - start)

    @staticmethod
    def _parse(name: str, response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            body = None

        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            raise FunctionsError(
                error.get("status") or "internal",
                error.get("message") or "",
                function=name,
                details=error.get("details"),
            )
        if response.is_error:
            raise FunctionsError.from_http_status(response.status_code, response.text[:200], function=name)
        if not isinstance(body, dict) or "result" not in body:
            raise FunctionsError("internal", "Response is missing a result", function=name)
        return body["result"]

    # ── Calendar and tasks ───────────────────────────────────────────────

    async def list_calendar_events(
        self,
        user_id: str,
        *,
        max_results: int = 50,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        lookahead_days: int = 30,
    ) -> list[dict[str, Any]]:
        """Upcoming Google Calendar events of a user; empty unless the call reports success."""
        time_min = time_min or utcnow()
        time_max = time_max or time_min + timedelta(days=lookahead_days)
        result = await self.call(
            "listCalendarEvents",
            {
                "userId": user_id,
                "maxResults": max_results,
                "timeMin": _isoformat(time_min),
                "timeMax": _isoformat(time_max),
            },
        )
        if isinstance(result, dict) and result.get("success") and isinstance(result.get("events"), list):
            return result["events"]
        return []

    async def delete_task(self, tenant_id: str, task_id: str) -> Any:
        return await self.call("deleteTask", {"tenantId": tenant_id, "taskId": task_id})

    # ── Context engine ───────────────────────────────────────────────────

    async def get_global_context(self) -> dict[str, Any]:
        result = await self.call("getGlobalContext", {})
        return _unwrap("getGlobalContext", result, "context", {})

    async def set_global_context(self, context: dict[str, Any], user_id: str) -> Any:
        return await self.call("setGlobalContext", {"context": context, "userId": user_id})

    async def list_scenarios(self) -> list[dict[str, Any]]:
        result = await self.call("listScenarios", {})
        return _unwrap("listScenarios", result, "scenarios", [])

    async def set_scenario(self, scenario_id: str, scenario: dict[str, Any], user_id: str) -> Any:
        return await self.call(
            "setScenario", {"scenarioId": scenario_id, "scenario": scenario, "userId": user_id}
        )

    # ── Prospecting ──────────────────────────────────────────────────────

    async def run_prospecting(self, tenant_id: str, prompt: str, filters: dict[str, Any]) -> Any:
        return await self.call(
            "runProspecting", {"prompt": prompt, "filters": filters, "tenantId": tenant_id}
        )

    async def save_prospecting_search(
        self,
        tenant_id: str,
        name: str,
        prompt: str,
        filters: dict[str, Any],
        visibility: str = "private",
    ) -> Any:
        return await self.call(
            "saveProspectingSearch",
            {
                "name": name,
                "prompt": prompt,
                "filters": filters,
                "visibility": visibility,
                "tenantId": tenant_id,
            },
        )

    async def add_prospects_to_crm(self, tenant_id: str, result_ids: list[str]) -> Any:
        return await self.call("addProspectsToCRM", {"resultIds": result_ids, "tenantId": tenant_id})

    async def create_call_list(self, tenant_id: str, result_ids: list[str], assign_to: str) -> Any:
        return await self.call(
            "createCallList",
            {"resultIds": result_ids, "tenantId": tenant_id, "assignTo": assign_to},
        )

    # ── CRM maintenance ──────────────────────────────────────────────────

    async def get_salespeople_for_tenant(self, tenant_id: str) -> list[dict[str, Any]]:
        result = await self.call("getSalespeopleForTenant", {"tenantId": tenant_id})
        return _unwrap("getSalespeopleForTenant", result, "salespeople", [])

    async def update_company_pipeline_totals(self, tenant_id: str, company_id: str) -> Any:
        return await self.call(
            "updateCompanyPipelineTotals", {"tenantId": tenant_id, "companyId": company_id}
        )

    async def delete_duplicate_companies(self, tenant_id: str) -> Any:
        return await self.call("deleteDuplicateCompanies", {"tenantId": tenant_id})

    async def manage_associations(
        self,
        tenant_id: str,
        action: str,
        source_type: str,
        source_id: str,
        target_type: str,
        target_id: str,
    ) -> Any:
        """Add or remove a link between two entities (``action`` is ``add`` or ``remove``)."""
        return await self.call(
            "manageAssociations",
            {
                "action": action,
                "sourceEntityType": source_type,
                "sourceEntityId": source_id,
                "targetEntityType": target_type,
                "targetEntityId": target_id,
                "tenantId": tenant_id,
            },
        )

    async def cleanup_contact_company_associations(self, tenant_id: str, id_token: str) -> dict[str, Any]:
        """Plain HTTPS endpoint (not callable protocol): ``{tenantId}`` in, ``{success, result}`` out."""
        url = f"{self._base_url}/{CLEANUP_ASSOCIATIONS_ENDPOINT}"
        async with self._client(id_token) as client:
            try:
                response = await client.post(url, json={"tenantId": tenant_id})
            except httpx.HTTPError as e:
                raise FunctionsError("unavailable", str(e), function=CLEANUP_ASSOCIATIONS_ENDPOINT) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            raise FunctionsError.from_http_status(
                response.status_code,
                message if isinstance(message, str) else "",
                function=CLEANUP_ASSOCIATIONS_ENDPOINT,
            )
        logger.info("contact_company_cleanup_completed", tenant_id=tenant_id)
        return body if isinstance(body, dict) else {}
