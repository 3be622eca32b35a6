"""Per-user calendar view preference (``month`` or ``day``), stored in Redis."""

from __future__ import annotations

from enum import Enum

import structlog

from src.crm.core.redis import TenantRedis

logger = structlog.get_logger(__name__)


class CalendarView(str, Enum):
    MONTH = "month"
    DAY = "day"


DEFAULT_VIEW = CalendarView.MONTH


class UserPreferences:
    """Small per-user preference store.

    Keys: ``prefs:{user_id}:calendar_view``. Values that are not a known
    view are ignored on read and rejected on write.
    """

    def __init__(self, redis: TenantRedis, user_id: str) -> None:
        self._redis = redis
        self._user_id = user_id

    def _key(self, name: str) -> str:
        return f"prefs:{self._user_id}:{name}"

    async def get_calendar_view(self) -> CalendarView:
        raw = await self._redis.get(self._key("calendar_view"))
        try:
            return CalendarView(raw) if raw else DEFAULT_VIEW
        except ValueError:
            logger.debug("calendar_view_ignored", user_id=self._user_id, value=raw)
            return DEFAULT_VIEW

    async def set_calendar_view(self, view: CalendarView | str) -> CalendarView:
        view = CalendarView(view)
        await self._redis.set(self._key("calendar_view"), view.value)
        return view
