"""Shared fixtures for API tests.

Provides:
- In-memory test doubles for every Firestore repository the routers use
- FakeRedis standing in for the tenant Redis wrapper
- A MagicMock callable-functions client (async methods are AsyncMocks)
- A FastAPI app with the v1 router, auth and tenant dependencies overridden
- An httpx AsyncClient over ASGITransport
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.crm.api.deps import CurrentUser, get_current_user, get_redis, get_tenant
from src.crm.api.v1.router import router as v1_router
from src.crm.core.tenant import TenantContext
from src.crm.deals.stages import PipelineStage, stages_from_documents
from src.crm.functions.client import CloudFunctionsClient
from src.crm.kpi.dashboard import KPIActivityCreate, activity_document, current_period, log_kpi_activity
from src.crm.repositories.base import EntityNotFoundError
from src.crm.templates.rendering import EmailTemplate

TEST_TENANT = "test-tenant"
TEST_USER = "user-1"


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


def _field(document: dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(document: dict[str, Any], filters) -> bool:
    for path, op, expected in filters or ():
        value = _field(document, path)
        if op == "==" and value != expected:
            return False
        if op == "array_contains" and (not isinstance(value, list) or expected not in value):
            return False
    return True


class InMemoryRepository:
    """Dict-backed FirestoreRepository for testing without Firestore."""

    collection_name = "memory"
    _ids = itertools.count(1)

    def __init__(self, documents: list[dict[str, Any]] | None = None) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        for document in documents or []:
            self.documents[document["id"]] = dict(document)

    def seed(self, *documents: dict[str, Any]) -> None:
        for document in documents:
            self.documents[document["id"]] = dict(document)

    async def list(self, tenant_id: str, filters=None, *, order_by=None, limit=None) -> list[dict[str, Any]]:
        rows = [dict(d) for d in self.documents.values() if _matches(d, filters)]
        return rows[:limit] if limit else rows

    async def get(self, tenant_id: str, entity_id: str) -> dict[str, Any] | None:
        document = self.documents.get(entity_id)
        return dict(document) if document is not None else None

    async def require(self, tenant_id: str, entity_id: str) -> dict[str, Any]:
        document = await self.get(tenant_id, entity_id)
        if document is None:
            raise EntityNotFoundError(self.collection_name, entity_id)
        return document

    async def create(self, tenant_id: str, data: dict[str, Any], *, entity_id: str | None = None) -> str:
        new_id = entity_id or f"{self.collection_name}-{next(self._ids)}"
        self.documents[new_id] = {**data, "id": new_id}
        return new_id

    async def update(self, tenant_id: str, entity_id: str, data: dict[str, Any], *, touch: bool = True) -> None:
        if entity_id not in self.documents:
            raise EntityNotFoundError(self.collection_name, entity_id)
        self.documents[entity_id].update(data)
        self.updates.append((entity_id, dict(data)))

    async def delete(self, tenant_id: str, entity_id: str) -> None:
        self.documents.pop(entity_id, None)


class InMemoryContactRepository(InMemoryRepository):
    collection_name = "crm_contacts"

    async def list_by_state(self, tenant_id: str, state: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("state", "==", state)])

    async def list_for_company(self, tenant_id: str, company_id: str) -> list[dict[str, Any]]:
        # Whole-value array matching, as Firestore array_contains does
        return [
            dict(c)
            for c in self.documents.values()
            if c.get("companyId") == company_id
            or any(
                entry in (company_id, {"id": company_id})
                for entry in ((c.get("associations") or {}).get("companies") or [])
            )
        ]


class InMemoryCompanyRepository(InMemoryRepository):
    collection_name = "crm_companies"

    def __init__(self, documents: list[dict[str, Any]] | None = None) -> None:
        super().__init__(documents)
        self.locations: dict[str, list[dict[str, Any]]] = {}

    async def list_locations(self, tenant_id: str, company_id: str) -> list[dict[str, Any]]:
        return list(self.locations.get(company_id, []))

    async def list_by_state(self, tenant_id: str, state: str) -> list[dict[str, Any]]:
        ids = {cid for cid, locs in self.locations.items() if any(loc.get("state") == state for loc in locs)}
        return [dict(c) for c in self.documents.values() if c["id"] in ids]

    async def update_totals(self, tenant_id: str, company_id: str, totals: dict[str, Any]) -> None:
        await self.update(tenant_id, company_id, totals)


class InMemoryDealRepository(InMemoryRepository):
    collection_name = "crm_deals"

    async def list_for_company(self, tenant_id: str, company_id: str) -> list[dict[str, Any]]:
        return [dict(d) for d in self.documents.values() if d.get("companyId") == company_id]


class InMemoryPipelineStageRepository(InMemoryRepository):
    collection_name = "crm_pipeline_stages"

    async def list_stages(self, tenant_id: str) -> list[PipelineStage]:
        return stages_from_documents(await self.list(tenant_id))


class InMemoryTaskRepository(InMemoryRepository):
    collection_name = "tasks"

    async def list_appointments(self, tenant_id: str, user_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("classification", "==", "appointment"), ("assignedTo", "==", user_id)])


class InMemoryActivityRepository(InMemoryRepository):
    collection_name = "activities"

    async def list_calendar_events(self, tenant_id: str, user_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("type", "==", "calendar_event"), ("createdBy", "==", user_id)])


class InMemoryKPIAssignmentRepository(InMemoryRepository):
    collection_name = "kpi_assignments"

    async def list_active(self, tenant_id: str, salesperson_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("salespersonId", "==", salesperson_id), ("isActive", "==", True)])


class InMemoryKPITrackingRepository(InMemoryRepository):
    collection_name = "kpi_tracking"

    async def list_for_salesperson(self, tenant_id: str, salesperson_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("salespersonId", "==", salesperson_id)])


class InMemoryKPISuggestionRepository(InMemoryKPITrackingRepository):
    collection_name = "kpi_task_suggestions"

    async def accept(self, tenant_id: str, suggestion_id: str) -> None:
        await self.update(tenant_id, suggestion_id, {"isAccepted": True})

    async def complete(self, tenant_id: str, suggestion_id: str) -> None:
        await self.update(tenant_id, suggestion_id, {"isCompleted": True})


class InMemoryKPIActivityRepository(InMemoryRepository):
    collection_name = "kpi_activities"

    async def log(
        self,
        tenant_id: str,
        salesperson_id: str,
        activity: KPIActivityCreate,
        tracking: InMemoryKPITrackingRepository,
    ) -> str:
        activity_id = await self.create(tenant_id, activity_document(activity, salesperson_id))
        rows = await tracking.list(
            tenant_id,
            [
                ("salespersonId", "==", salesperson_id),
                ("kpiId", "==", activity.kpi_id),
                ("period", "==", current_period()),
            ],
            limit=1,
        )
        if rows:
            await tracking.update(tenant_id, rows[0]["id"], log_kpi_activity(rows[0], activity.value))
        return activity_id


class InMemoryEmailTemplateRepository(InMemoryRepository):
    collection_name = "email_templates"

    async def list_templates(self, tenant_id: str) -> list[EmailTemplate]:
        return [EmailTemplate.from_document(d) for d in await self.list(tenant_id)]

    async def get_template(self, tenant_id: str, template_id: str) -> EmailTemplate:
        return EmailTemplate.from_document(await self.require(tenant_id, template_id))

    async def save_template(self, tenant_id: str, template: EmailTemplate) -> str:
        if template.id:
            await self.update(tenant_id, template.id, template.to_document())
            return template.id
        return await self.create(tenant_id, template.to_document())


class InMemoryProspectingSearchRepository(InMemoryRepository):
    collection_name = "prospecting_saved_searches"

    async def list_for_user(self, tenant_id: str, user_id: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("userId", "==", user_id)])


class FakeRedis:
    """Dict-backed stand-in for TenantRedis."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttl: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.data[key] = value
        self.ttl[key] = ex

    async def delete(self, key: str) -> int:
        return 1 if self.data.pop(key, None) is not None else 0


# ── Dependency overrides ─────────────────────────────────────────────────────


def _mock_get_current_user() -> CurrentUser:
    return CurrentUser(id=TEST_USER, tenant_id=TEST_TENANT, email="ann@example.com", name="Ann Lee")


def _mock_get_tenant() -> TenantContext:
    return TenantContext(tenant_id=TEST_TENANT)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def repos() -> dict[str, InMemoryRepository]:
    """app.state attribute -> in-memory repository."""
    return {
        "contact_repository": InMemoryContactRepository(),
        "company_repository": InMemoryCompanyRepository(),
        "deal_repository": InMemoryDealRepository(),
        "pipeline_stage_repository": InMemoryPipelineStageRepository(),
        "task_repository": InMemoryTaskRepository(),
        "activity_repository": InMemoryActivityRepository(),
        "kpi_assignment_repository": InMemoryKPIAssignmentRepository(),
        "kpi_tracking_repository": InMemoryKPITrackingRepository(),
        "kpi_suggestion_repository": InMemoryKPISuggestionRepository(),
        "kpi_activity_repository": InMemoryKPIActivityRepository(),
        "email_template_repository": InMemoryEmailTemplateRepository(),
        "prospecting_search_repository": InMemoryProspectingSearchRepository(),
    }


@pytest.fixture
def functions_client() -> MagicMock:
    """Spec'd client: coroutine methods are AsyncMocks; with_token() returns the same mock."""
    client = MagicMock(spec=CloudFunctionsClient)
    client.with_token.return_value = client
    return client


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def app(repos, functions_client, fake_redis) -> FastAPI:
    """FastAPI app with the v1 router and in-memory services on app.state."""
    application = FastAPI()
    application.include_router(v1_router)

    application.dependency_overrides[get_current_user] = _mock_get_current_user
    application.dependency_overrides[get_tenant] = _mock_get_tenant
    application.dependency_overrides[get_redis] = lambda: fake_redis

    for attr, repo in repos.items():
        setattr(application.state, attr, repo)
    application.state.functions_client = functions_client
    application.state.sales_teams = {}
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def bare_client() -> AsyncGenerator[AsyncClient, None]:
    """Client for an app with auth overridden but nothing wired on app.state."""
    application = FastAPI()
    application.include_router(v1_router)
    application.dependency_overrides[get_current_user] = _mock_get_current_user
    application.dependency_overrides[get_tenant] = _mock_get_tenant
    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
