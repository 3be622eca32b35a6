"""Redis access for per-user state that must survive page reloads.

The navigation session and the calendar view preference used to live in
browser storage. They now live in Redis under ``t:{tenant_id}:{key}`` so two
tenants can never read each other's entries, even for the same user id.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.crm.config import get_settings
from src.crm.core.tenant import get_current_tenant

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Shared client, created on first use from REDIS_URL."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(get_settings().REDIS_URL, decode_responses=True)
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.close()
        _redis_pool = None


def tenant_key(tenant_id: str, key: str) -> str:
    return f"t:{tenant_id}:{key}"


class TenantRedis:
    """String get/set/delete scoped to one tenant.

    The tenant is fixed at construction, or read from the request's
    TenantContext on every call when omitted.
    """

    def __init__(self, redis_client: aioredis.Redis, tenant_id: str | None = None):
        self._redis = redis_client
        self._tenant_id = tenant_id

    def _key(self, key: str) -> str:
        return tenant_key(self._tenant_id or get_current_tenant().tenant_id, key)

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._key(key))

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        """Store ``value``; ``ex`` is a TTL in seconds."""
        await self._redis.set(self._key(key), value, ex=ex)

    async def delete(self, key: str) -> int:
        return await self._redis.delete(self._key(key))


def get_tenant_redis() -> TenantRedis:
    return TenantRedis(get_redis_pool())
