"""Per-user CRM navigation cache.

Holds the state that makes the CRM screens resumable: the active tab, the
"all"/"my" filters, the search term, and the state sub-filters that also
appear as shareable URL parameters (``tab``, ``companyState``,
``contactState``).

Lifecycle is explicit: start() on login creates a default entry, save()
merges updates, clear() on logout removes it. Entries also expire after
SESSION_CACHE_TTL_SECONDS of inactivity.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from src.crm.core.redis import TenantRedis

logger = structlog.get_logger(__name__)


class CRMTab(str, Enum):
    TASKS = "tasks"
    CONTACTS = "contacts"
    COMPANIES = "companies"
    DEALS = "deals"


class OwnershipFilter(str, Enum):
    ALL = "all"
    MY = "my"


# URL ``tab`` values accepted for each tab
TAB_ALIASES: dict[str, CRMTab] = {
    "tasks": CRMTab.TASKS,
    "contacts": CRMTab.CONTACTS,
    "companies": CRMTab.COMPANIES,
    "deals": CRMTab.DEALS,
    "opportunities": CRMTab.DEALS,
}


def tab_from_param(value: str | None) -> CRMTab:
    """Tab named by a ``?tab=`` URL parameter; unknown values open Tasks."""
    return TAB_ALIASES.get((value or "").strip().lower(), CRMTab.TASKS)


class NavigationState(BaseModel):
    active_tab: CRMTab = CRMTab.TASKS
    company_filter: OwnershipFilter = OwnershipFilter.ALL
    contact_filter: OwnershipFilter = OwnershipFilter.ALL
    deal_filter: OwnershipFilter = OwnershipFilter.ALL
    search_term: str = ""
    company_state: str | None = None
    contact_state: str | None = None

    def to_query_params(self) -> dict[str, str]:
        """Shareable URL parameters for this state."""
        params = {"tab": self.active_tab.value}
        if self.company_state:
            params["companyState"] = self.company_state
        if self.contact_state:
            params["contactState"] = self.contact_state
        return params


class CRMSessionCache:
    """Navigation state of one user, stored under ``session:{user_id}:navigation``.

    Args:
        redis: Tenant-scoped Redis wrapper.
        user_id: Owner of the session.
        ttl_seconds: Expiry refreshed on every write.
    """

    def __init__(self, redis: TenantRedis, user_id: str, ttl_seconds: int = 43200) -> None:
        self._redis = redis
        self._user_id = user_id
        self._ttl = ttl_seconds

    @property
    def key(self) -> str:
        return f"session:{self._user_id}:navigation"

    async def start(self, initial: NavigationState | None = None) -> NavigationState:
        """Create the session entry (overwriting any stale one)."""
        state = initial or NavigationState()
        await self._write(state)
        logger.info("crm_session_started", user_id=self._user_id)
        return state

    async def load(self) -> NavigationState | None:
        """Cached state, or None when there is no (valid) entry."""
        raw = await self._redis.get(self.key)
        if not raw:
            return None
        try:
            return NavigationState.model_validate_json(raw)
        except ValidationError:
            logger.warning("crm_session_corrupt", user_id=self._user_id)
            await self._redis.delete(self.key)
            return None

    async def get(self) -> NavigationState:
        return await self.load() or NavigationState()

    async def save(self, updates: dict[str, Any]) -> NavigationState:
        """Merge ``updates`` into the cached state and refresh the TTL."""
        current = await self.get()
        state = NavigationState.model_validate({**current.model_dump(), **updates})
        await self._write(state)
        return state

    async def clear(self) -> None:
        await self._redis.delete(self.key)
        logger.info("crm_session_cleared", user_id=self._user_id)

    async def _write(self, state: NavigationState) -> None:
        await self._redis.set(self.key, state.model_dump_json(), ex=self._ttl)
