"""Sales team directory of a tenant.

Salespeople come from the ``getSalespeopleForTenant`` function. The list is
loaded once and reloaded on demand; reload requests are debounced so a burst
of writes to salesperson records costs one function call.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.crm.core.debounce import Debouncer
from src.crm.functions.client import CloudFunctionsClient

logger = structlog.get_logger(__name__)


def _uid(person: dict[str, Any]) -> str | None:
    value = person.get("id") or person.get("uid")
    return str(value) if value else None


class SalesTeamDirectory:
    """Cached salespeople of one tenant.

    Args:
        tenant_id: Tenant whose salespeople are listed.
        functions: Callable-functions client.
        reload_delay_seconds: Quiet period before a requested reload runs.
    """

    def __init__(
        self,
        tenant_id: str,
        functions: CloudFunctionsClient,
        reload_delay_seconds: float = 10.0,
    ) -> None:
        self.tenant_id = tenant_id
        self._functions = functions
        self._salespeople: list[dict[str, Any]] | None = None
        self._reload = Debouncer(reload_delay_seconds, self.reload, name="sales_team_reload")

    @property
    def loaded(self) -> bool:
        return self._salespeople is not None

    @property
    def reload_pending(self) -> bool:
        return self._reload.pending

    async def reload(self) -> list[dict[str, Any]]:
        """Fetch the salespeople now, replacing the cached list."""
        people = await self._functions.get_salespeople_for_tenant(self.tenant_id)
        self._salespeople = [p for p in people if isinstance(p, dict) and _uid(p)]
        logger.info("sales_team_loaded", tenant_id=self.tenant_id, count=len(self._salespeople))
        return self._salespeople

    def request_reload(self) -> None:
        """Schedule a debounced reload. Needs a running event loop."""
        self._reload.trigger()

    async def salespeople(self) -> list[dict[str, Any]]:
        if self._salespeople is None:
            return await self.reload()
        return self._salespeople

    async def directory(self) -> dict[str, dict[str, Any]]:
        """uid -> user document, the shape normalize_salesperson_entries() expects."""
        return {_uid(person): person for person in await self.salespeople()}

    def close(self) -> None:
        self._reload.cancel()
