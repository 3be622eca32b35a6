"""Firestore client singleton and tenant-scoped collection access.

Provides:
- get_firestore_client(): lazily constructed google-cloud-firestore Client
- TenantFirestore: resolves collections under tenants/{tenantId}/...
- Subscription: handle for a real-time query listener with idempotent cancel()
- snapshot_to_dict(): flatten a DocumentSnapshot into a plain dict with ``id``

The Firestore SDK is synchronous; repositories wrap calls with
asyncio.to_thread(). Real-time listeners (on_snapshot) deliver on a
background thread owned by the SDK.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import Any

import structlog
from google.cloud import firestore
from google.cloud.firestore import FieldFilter

from src.crm.config import get_settings
from src.crm.core.tenant import tenant_path

logger = structlog.get_logger(__name__)

# A filter is (field_path, op, value), e.g. ("classification", "==", "appointment")
Filter = tuple[str, str, Any]
SnapshotCallback = Callable[[list[dict[str, Any]]], None]

# ── Module-level client (lazy init) ────────────────────────────────────────

_client: firestore.Client | None = None


def get_firestore_client() -> firestore.Client:
    """Get or create the Firestore client singleton."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = firestore.Client(
            project=settings.GCP_PROJECT_ID or None,
            database=settings.FIRESTORE_DATABASE,
        )
        logger.info(
            "firestore_client_initialized",
            project=settings.GCP_PROJECT_ID,
            database=settings.FIRESTORE_DATABASE,
        )
    return _client


def close_firestore() -> None:
    """Close the Firestore client and drop the singleton."""
    global _client
    if _client is not None:
        _client.close()
        _client = None


# ── Snapshot helpers ────────────────────────────────────────────────────────


def snapshot_to_dict(snapshot: Any) -> dict[str, Any]:
    """Convert a DocumentSnapshot into a dict carrying its document id."""
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


def apply_filters(query: Any, filters: Iterable[Filter] | None) -> Any:
    """Apply equality/range filters to a Firestore query or collection."""
    for field_path, op, value in filters or ():
        query = query.where(filter=FieldFilter(field_path, op, value))
    return query


# ── Subscriptions ───────────────────────────────────────────────────────────


class Subscription:
    """Handle for a live query listener.

    Wraps the SDK Watch returned by ``query.on_snapshot``. Each snapshot is
    delivered to the callback as the complete list of matching documents.
    cancel() unsubscribes; calling it again is a no-op.
    """

    def __init__(self, query: Any, callback: SnapshotCallback, name: str = "") -> None:
        self._name = name
        self._callback = callback
        self._lock = threading.Lock()
        self._cancelled = False
        self._watch = query.on_snapshot(self._on_snapshot)

    def _on_snapshot(self, docs: list[Any], changes: Any, read_time: Any) -> None:
        if self._cancelled:
            return
        documents = [snapshot_to_dict(doc) for doc in docs]
        logger.debug("snapshot_received", subscription=self._name, count=len(documents))
        try:
            self._callback(documents)
        except Exception:
            logger.exception("snapshot_callback_failed", subscription=self._name)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop receiving snapshots."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
        self._watch.unsubscribe()
        logger.debug("subscription_cancelled", subscription=self._name)


# ── Tenant-scoped access ────────────────────────────────────────────────────


class TenantFirestore:
    """Tenant-scoped view over the Firestore client.

    Args:
        tenant_id: Tenant whose subtree (tenants/{tenant_id}) is addressed.
        client: Optional Firestore client; defaults to the singleton.
    """

    def __init__(self, tenant_id: str, client: firestore.Client | None = None) -> None:
        self.tenant_id = tenant_id
        self._client = client

    @property
    def client(self) -> firestore.Client:
        if self._client is None:
            self._client = get_firestore_client()
        return self._client

    def collection(self, *segments: str) -> Any:
        """Return a CollectionReference under the tenant, e.g. ("crm_deals",)."""
        return self.client.collection(tenant_path(self.tenant_id, *segments))
