"""Async repository base over tenant-scoped Firestore collections.

Provides FirestoreRepository with the client_factory callable pattern: the
factory is called per operation, so tests pass a factory returning a mock
client and production passes get_firestore_client. Every method takes
tenant_id as its first argument and resolves its collection under
``tenants/{tenant_id}/``.

The Firestore SDK is blocking; each operation runs in asyncio.to_thread().
Documents are returned as plain dicts carrying their ``id``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from src.crm.core.firestore import (
    Filter,
    SnapshotCallback,
    Subscription,
    TenantFirestore,
    apply_filters,
    get_firestore_client,
    snapshot_to_dict,
)

logger = structlog.get_logger(__name__)

# (field, direction) with direction "ASCENDING" or "DESCENDING"
OrderBy = tuple[str, str]


class EntityNotFoundError(LookupError):
    """Raised when a required document does not exist."""

    def __init__(self, collection: str, entity_id: str) -> None:
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection}/{entity_id} not found")


class FirestoreRepository:
    """CRUD and live queries for one tenant-scoped collection.

    Args:
        client_factory: Zero-arg callable returning a firestore.Client.
    """

    collection_name: str = ""

    def __init__(self, client_factory: Callable[[], Any] = get_firestore_client) -> None:
        self._client_factory = client_factory

    # ── Collection resolution ────────────────────────────────────────────

    def _store(self, tenant_id: str) -> TenantFirestore:
        return TenantFirestore(tenant_id, self._client_factory())

    def _collection(self, tenant_id: str, *segments: str) -> Any:
        """Collection reference; defaults to this repository's collection."""
        return self._store(tenant_id).collection(*(segments or (self.collection_name,)))

    def _build_query(
        self,
        collection: Any,
        filters: Iterable[Filter] | None = None,
        order_by: Sequence[OrderBy] | None = None,
        limit: int | None = None,
    ) -> Any:
        query = apply_filters(collection, filters)
        for field, direction in order_by or ():
            query = query.order_by(field, direction=direction)
        if limit:
            query = query.limit(limit)
        return query

    # ── Reads ────────────────────────────────────────────────────────────

    async def _stream(self, query: Any) -> list[dict[str, Any]]:
        def _run() -> list[dict[str, Any]]:
            return [snapshot_to_dict(doc) for doc in query.stream()]

        return await asyncio.to_thread(_run)

    async def list(
        self,
        tenant_id: str,
        filters: Iterable[Filter] | None = None,
        *,
        order_by: Sequence[OrderBy] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List documents matching every filter."""
        query = self._build_query(self._collection(tenant_id), filters, order_by, limit)
        documents = await self._stream(query)
        logger.debug(
            "firestore_list",
            collection=self.collection_name,
            tenant_id=tenant_id,
            count=len(documents),
        )
        return documents

    async def get(self, tenant_id: str, entity_id: str) -> dict[str, Any] | None:
        """Get a document by id, or None if it does not exist."""
        ref = self._collection(tenant_id).document(entity_id)

        def _run() -> dict[str, Any] | None:
            snapshot = ref.get()
            return snapshot_to_dict(snapshot) if snapshot.exists else None

        return await asyncio.to_thread(_run)

    async def require(self, tenant_id: str, entity_id: str) -> dict[str, Any]:
        """Get a document by id, raising EntityNotFoundError if it does not exist."""
        document = await self.get(tenant_id, entity_id)
        if document is None:
            raise EntityNotFoundError(self.collection_name, entity_id)
        return document

    # ── Writes ───────────────────────────────────────────────────────────

    async def create(
        self,
        tenant_id: str,
        data: dict[str, Any],
        *,
        entity_id: str | None = None,
    ) -> str:
        """Create a document (auto id unless ``entity_id`` is given). Returns the id."""
        collection = self._collection(tenant_id)
        ref = collection.document(entity_id) if entity_id else collection.document()
        payload = {
            **data,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        await asyncio.to_thread(ref.set, payload)
        logger.info("firestore_created", collection=self.collection_name, tenant_id=tenant_id, id=ref.id)
        return ref.id

    async def update(
        self,
        tenant_id: str,
        entity_id: str,
        data: dict[str, Any],
        *,
        touch: bool = True,
    ) -> None:
        """Merge fields into an existing document. Raises EntityNotFoundError if absent.

        ``touch=False`` leaves ``updatedAt`` alone; deal health reads it as
        the last-activity time, so bulk maintenance writes must not bump it.
        """
        ref = self._collection(tenant_id).document(entity_id)
        payload = {**data, "updatedAt": firestore.SERVER_TIMESTAMP} if touch else dict(data)
        try:
            await asyncio.to_thread(ref.update, payload)
        except gcp_exceptions.NotFound as e:
            raise EntityNotFoundError(self.collection_name, entity_id) from e
        logger.info(
            "firestore_updated",
            collection=self.collection_name,
            tenant_id=tenant_id,
            id=entity_id,
            fields=sorted(data),
        )

    async def delete(self, tenant_id: str, entity_id: str) -> None:
        ref = self._collection(tenant_id).document(entity_id)
        await asyncio.to_thread(ref.delete)
        logger.info("firestore_deleted", collection=self.collection_name, tenant_id=tenant_id, id=entity_id)

    # ── Live queries ─────────────────────────────────────────────────────

    def subscribe(
        self,
        tenant_id: str,
        filters: Iterable[Filter] | None,
        callback: SnapshotCallback,
        *,
        name: str | None = None,
    ) -> Subscription:
        """Listen to a query; ``callback`` receives the full result list on every change."""
        query = self._build_query(self._collection(tenant_id), filters)
        label = name or f"{tenant_id}/{self.collection_name}"
        logger.info("firestore_subscribed", subscription=label)
        return Subscription(query, callback, name=label)
