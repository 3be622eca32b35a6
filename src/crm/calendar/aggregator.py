"""Thread-safe merge of calendar feeds.

Merge contract: each source owns its slice of the event list. apply(source,
events) replaces every event previously held for that source and leaves the
other sources untouched (last snapshot wins per source). The merged view
is the plain concatenation of all slices; no cross-source deduplication by
external id is attempted.

Firestore snapshot callbacks arrive on SDK threads, so all state is guarded
by a lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import date, datetime, timezone, tzinfo

import structlog

from src.crm.calendar.events import CalendarEvent, EventSource

logger = structlog.get_logger(__name__)


class CalendarAggregator:
    """Holds the latest event list of every source."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_source: dict[EventSource, list[CalendarEvent]] = {}

    def apply(self, source: EventSource, events: Iterable[CalendarEvent]) -> None:
        """Replace all events of ``source`` with ``events``."""
        source = EventSource(source)
        snapshot = list(events)
        with self._lock:
            self._by_source[source] = snapshot
        logger.debug("calendar_source_updated", source=source.value, count=len(snapshot))

    def events(self, source: EventSource | None = None) -> list[CalendarEvent]:
        """All held events (or those of one source), in source insertion order."""
        with self._lock:
            if source is not None:
                return list(self._by_source.get(EventSource(source), ()))
            return [event for events in self._by_source.values() for event in events]

    def events_for_day(self, day: date, tz: tzinfo = timezone.utc) -> list[CalendarEvent]:
        """Events starting on ``day`` (in ``tz``), sorted by start time."""
        if isinstance(day, datetime):
            day = day.astimezone(tz).date()
        matches = [e for e in self.events() if e.start.astimezone(tz).date() == day]
        return sorted(matches, key=lambda e: e.start)

    def sources(self) -> list[EventSource]:
        with self._lock:
            return list(self._by_source)

    def clear(self, source: EventSource | None = None) -> None:
        with self._lock:
            if source is None:
                self._by_source.clear()
            else:
                self._by_source.pop(EventSource(source), None)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(events) for events in self._by_source.values())
