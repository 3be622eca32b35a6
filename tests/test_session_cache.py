"""Tests for the CRM navigation session cache and tenant-scoped Redis keys."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.crm.core.redis import TenantRedis
from src.crm.core.session import (
    CRMSessionCache,
    CRMTab,
    NavigationState,
    OwnershipFilter,
    tab_from_param,
)
from src.crm.core.tenant import (
    TenantContext,
    get_current_tenant,
    reset_tenant_context,
    set_tenant_context,
    tenant_path,
)


def _redis(stored: str | None = None) -> MagicMock:
    redis = MagicMock()
    redis.get = AsyncMock(return_value=stored)
    redis.set = AsyncMock()
    redis.delete = AsyncMock(return_value=1)
    return redis


# ── Navigation state ─────────────────────────────────────────────────────────


class TestNavigationState:
    @pytest.mark.parametrize(
        "param,expected",
        [("deals", CRMTab.DEALS), ("Opportunities", CRMTab.DEALS), ("bogus", CRMTab.TASKS), (None, CRMTab.TASKS)],
    )
    def test_tab_from_param(self, param, expected) -> None:
        assert tab_from_param(param) == expected

    def test_query_params(self) -> None:
        state = NavigationState(active_tab=CRMTab.COMPANIES, company_state="TX")
        assert state.to_query_params() == {"tab": "companies", "companyState": "TX"}


# ── Session cache ────────────────────────────────────────────────────────────


class TestCRMSessionCache:
    @pytest.mark.asyncio
    async def test_start_writes_default_with_ttl(self) -> None:
        redis = _redis()
        cache = CRMSessionCache(redis, "u1", ttl_seconds=60)

        state = await cache.start()

        assert state == NavigationState()
        key, payload = redis.set.call_args.args
        assert key == "session:u1:navigation"
        assert NavigationState.model_validate_json(payload) == state
        assert redis.set.call_args.kwargs == {"ex": 60}

    @pytest.mark.asyncio
    async def test_save_merges_updates(self) -> None:
        stored = NavigationState(active_tab=CRMTab.DEALS, search_term="acme").model_dump_json()
        redis = _redis(stored)
        cache = CRMSessionCache(redis, "u1")

        state = await cache.save({"deal_filter": "my"})

        assert state.active_tab == CRMTab.DEALS
        assert state.search_term == "acme"
        assert state.deal_filter == OwnershipFilter.MY

    @pytest.mark.asyncio
    async def test_corrupt_entry_dropped(self) -> None:
        redis = _redis('{"active_tab": "nowhere"}')
        cache = CRMSessionCache(redis, "u1")

        assert await cache.load() is None
        redis.delete.assert_awaited_once_with("session:u1:navigation")
        assert await cache.get() == NavigationState()

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        redis = _redis()
        await CRMSessionCache(redis, "u1").clear()
        redis.delete.assert_awaited_once_with("session:u1:navigation")


# ── Tenant scoping ───────────────────────────────────────────────────────────


class TestTenantScoping:
    def test_tenant_path(self) -> None:
        assert tenant_path("acme", "crm_companies", "c1") == "tenants/acme/crm_companies/c1"
        with pytest.raises(ValueError):
            tenant_path("")

    def test_context_set_and_reset(self) -> None:
        token = set_tenant_context(TenantContext(tenant_id="acme"))
        try:
            assert get_current_tenant().tenant_id == "acme"
            assert get_current_tenant().root_path == "tenants/acme"
        finally:
            reset_tenant_context(token)

    @pytest.mark.asyncio
    async def test_redis_keys_prefixed(self) -> None:
        raw = MagicMock()
        raw.get = AsyncMock(return_value="v")
        raw.set = AsyncMock()

        redis = TenantRedis(raw, tenant_id="acme")
        await redis.set("k", "v", ex=5)
        assert await redis.get("k") == "v"

        raw.set.assert_awaited_once_with("t:acme:k", "v", ex=5)
        raw.get.assert_awaited_once_with("t:acme:k")

    @pytest.mark.asyncio
    async def test_redis_uses_context_tenant(self) -> None:
        raw = MagicMock()
        raw.delete = AsyncMock(return_value=1)
        token = set_tenant_context(TenantContext(tenant_id="beta"))
        try:
            await TenantRedis(raw).delete("k")
        finally:
            reset_tenant_context(token)
        raw.delete.assert_awaited_once_with("t:beta:k")
