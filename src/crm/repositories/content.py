"""Email templates and saved prospecting searches."""

from __future__ import annotations

from src.crm.repositories.base import FirestoreRepository
from src.crm.templates.rendering import EmailTemplate


class EmailTemplateRepository(FirestoreRepository):
    collection_name = "email_templates"

    async def list_templates(self, tenant_id: str) -> list[EmailTemplate]:
        """All templates, newest first."""
        documents = await self.list(tenant_id, order_by=[("createdAt", "DESCENDING")])
        return [EmailTemplate.from_document(doc) for doc in documents]

    async def get_template(self, tenant_id: str, template_id: str) -> EmailTemplate:
        return EmailTemplate.from_document(await self.require(tenant_id, template_id))

    async def save_template(self, tenant_id: str, template: EmailTemplate) -> str:
        """Create or update; the ``variables`` field is re-derived from the body."""
        if template.id:
            await self.update(tenant_id, template.id, template.to_document())
            return template.id
        return await self.create(tenant_id, template.to_document())


class ProspectingSearchRepository(FirestoreRepository):
    collection_name = "prospecting_saved_searches"

    async def list_for_user(self, tenant_id: str, user_id: str) -> list[dict]:
        return await self.list(
            tenant_id,
            [("userId", "==", user_id)],
            order_by=[("createdAt", "DESCENDING")],
        )
