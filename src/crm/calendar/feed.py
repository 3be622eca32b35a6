"""Calendar feed: wires the three event sources into a CalendarAggregator.

Two modes:

    load()          one-shot fetch of every source (request/response APIs)
    start()/stop()  live mode; Firestore listeners keep their slices current

The Google Calendar call is best effort in both modes. A failure is logged
and the previously held Google events stay as they were.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from src.crm.calendar.aggregator import CalendarAggregator
from src.crm.calendar.events import EventSource, convert_all
from src.crm.core.firestore import Subscription
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError, is_calendar_not_connected
from src.crm.repositories.activity import ActivityRepository, TaskRepository

logger = structlog.get_logger(__name__)


class CalendarFeed:
    """Merged calendar of one user.

    Args:
        tenant_id: Tenant owning the tasks and activities.
        user_id: User whose appointments and Google events are shown.
        tasks: Repository for ``tasks`` (appointments).
        activities: Repository for ``activities`` (synced Google events).
        functions: Callable-functions client for listCalendarEvents.
        aggregator: Shared aggregator; a new one by default.
        max_results: Google events requested per call.
        lookahead_days: Google events window, from now.
    """

    def __init__(
        self,
        tenant_id: str,
        user_id: str,
        *,
        tasks: TaskRepository,
        activities: ActivityRepository,
        functions: CloudFunctionsClient,
        aggregator: CalendarAggregator | None = None,
        max_results: int = 50,
        lookahead_days: int = 30,
    ) -> None:
        self.tenant_id = tenant_id
        self.user_id = user_id
        self._tasks = tasks
        self._activities = activities
        self._functions = functions
        self.aggregator = aggregator or CalendarAggregator()
        self._max_results = max_results
        self._lookahead_days = lookahead_days
        self._subscriptions: list[Subscription] = []

    # ── Source handlers ──────────────────────────────────────────────────

    def _apply(self, source: EventSource) -> Callable[[list[dict[str, Any]]], None]:
        def _handler(records: list[dict[str, Any]]) -> None:
            events = convert_all(source, records)
            self.aggregator.apply(source, events)
            if len(events) != len(records):
                logger.debug(
                    "calendar_records_dropped",
                    source=source.value,
                    dropped=len(records) - len(events),
                )

        return _handler

    async def refresh_google(self) -> bool:
        """Fetch upcoming Google Calendar events. Returns False if the call failed."""
        try:
            records = await self._functions.list_calendar_events(
                self.user_id,
                max_results=self._max_results,
                lookahead_days=self._lookahead_days,
            )
        except FunctionsError as e:
            if is_calendar_not_connected(e):
                logger.info("google_calendar_not_connected", user_id=self.user_id)
            else:
                logger.warning("google_calendar_unavailable", user_id=self.user_id, code=e.code)
            return False
        self._apply(EventSource.GOOGLE_CALENDAR)(records)
        return True

    # ── One-shot ─────────────────────────────────────────────────────────

    async def load(self) -> CalendarAggregator:
        """Fetch every source once and return the populated aggregator."""
        appointments = await self._tasks.list_appointments(self.tenant_id, self.user_id)
        self._apply(EventSource.CRM_APPOINTMENT)(appointments)
        await self.refresh_google()
        synced = await self._activities.list_calendar_events(self.tenant_id, self.user_id)
        self._apply(EventSource.SYNCED_CALENDAR_EVENT)(synced)
        logger.info(
            "calendar_loaded",
            tenant_id=self.tenant_id,
            user_id=self.user_id,
            count=len(self.aggregator),
        )
        return self.aggregator

    # ── Live ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._subscriptions)

    async def start(self) -> None:
        """Attach listeners and fetch Google events. Calling it twice is a no-op.

        When any step fails, listeners already attached are cancelled before
        the error propagates.
        """
        if self.running:
            return
        try:
            self._subscriptions.append(
                self._tasks.subscribe_appointments(
                    self.tenant_id, self.user_id, self._apply(EventSource.CRM_APPOINTMENT)
                )
            )
            await self.refresh_google()
            self._subscriptions.append(
                self._activities.subscribe_calendar_events(
                    self.tenant_id, self.user_id, self._apply(EventSource.SYNCED_CALENDAR_EVENT)
                )
            )
        except BaseException:
            self.stop()
            raise
        logger.info("calendar_feed_started", tenant_id=self.tenant_id, user_id=self.user_id)

    def stop(self) -> None:
        """Cancel every listener. Held events are kept."""
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()
        logger.info("calendar_feed_stopped", tenant_id=self.tenant_id, user_id=self.user_id)

    async def __aenter__(self) -> CalendarFeed:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.stop()
