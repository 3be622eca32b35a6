"""Repositories for the core CRM collections: contacts, companies, deals, stages."""

from __future__ import annotations

from typing import Any

import structlog

from src.crm.deals.stages import PipelineStage, stages_from_documents
from src.crm.repositories.base import FirestoreRepository

logger = structlog.get_logger(__name__)


class ContactRepository(FirestoreRepository):
    collection_name = "crm_contacts"

    async def list_by_state(self, tenant_id: str, state: str) -> list[dict[str, Any]]:
        return await self.list(tenant_id, [("state", "==", state)])

    async def list_for_company(self, tenant_id: str, company_id: str) -> list[dict[str, Any]]:
        """Contacts linked to ``company_id`` through ``associations.companies`` or legacy ``companyId``.

        ``associations.companies`` entries are matched in both stored forms,
        the bare id and the ``{"id": ...}`` object. Firestore compares array
        elements by whole value, so an object entry that also carries
        snapshot fields (name, ...) is only found once it is rewritten to
        one of those forms.
        """
        by_id = await self.list(
            tenant_id, [("associations.companies", "array_contains", company_id)]
        )
        by_object = await self.list(
            tenant_id, [("associations.companies", "array_contains", {"id": company_id})]
        )
        by_legacy = await self.list(tenant_id, [("companyId", "==", company_id)])
        return _merge_by_id(by_id, by_object, by_legacy)


class CompanyRepository(FirestoreRepository):
    """``crm_companies`` plus its ``locations``/``divisions`` subcollections.

    State filtering goes through ``company_locations``, a denormalized
    mirror of every company location keyed for state queries.
    """

    collection_name = "crm_companies"
    location_index_collection = "company_locations"

    async def list_locations(self, tenant_id: str, company_id: str) -> list[dict[str, Any]]:
        collection = self._collection(tenant_id, self.collection_name, company_id, "locations")
        return await self._stream(collection)

    async def list_divisions(self, tenant_id: str, company_id: str) -> list[dict[str, Any]]:
        collection = self._collection(tenant_id, self.collection_name, company_id, "divisions")
        return await self._stream(collection)

    async def company_ids_in_state(self, tenant_id: str, state: str) -> set[str]:
        """Ids of companies with at least one location in ``state``."""
        collection = self._collection(tenant_id, self.location_index_collection)
        rows = await self._stream(self._build_query(collection, [("state", "==", state)]))
        return {row["companyId"] for row in rows if row.get("companyId")}

    async def list_by_state(self, tenant_id: str, state: str) -> list[dict[str, Any]]:
        company_ids = await self.company_ids_in_state(tenant_id, state)
        if not company_ids:
            return []
        companies = await self.list(tenant_id)
        return [c for c in companies if c["id"] in company_ids]

    async def update_totals(self, tenant_id: str, company_id: str, totals: dict[str, Any]) -> None:
        """Cache computed pipeline totals on the company document."""
        await self.update(tenant_id, company_id, totals)


class DealRepository(FirestoreRepository):
    collection_name = "crm_deals"

    async def list_for_company(self, tenant_id: str, company_id: str) -> list[dict[str, Any]]:
        """Deals linked by legacy ``companyId`` or by bare id in ``associations.companies``."""
        by_legacy = await self.list(tenant_id, [("companyId", "==", company_id)])
        by_association = await self.list(
            tenant_id, [("associations.companies", "array_contains", company_id)]
        )
        return _merge_by_id(by_legacy, by_association)


class PipelineStageRepository(FirestoreRepository):
    collection_name = "crm_pipeline_stages"

    async def list_stages(self, tenant_id: str) -> list[PipelineStage]:
        """Tenant stages ordered by ``order``; the default catalogue when none are stored."""
        documents = await self.list(tenant_id)
        stages = stages_from_documents(documents)
        logger.debug("pipeline_stages_loaded", tenant_id=tenant_id, stored=len(documents))
        return stages


def _merge_by_id(*groups: list[dict[str, Any]]) -> list[dict[str, Any]]:
    merged: dict[str, dict[str, Any]] = {}
    for group in groups:
        for document in group:
            merged.setdefault(document["id"], document)
    return list(merged.values())
