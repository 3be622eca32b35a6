"""Unified calendar event model and per-source converters.

Three sources feed the calendar:

    crm_appointment        tasks with classification == "appointment"
    google_calendar        events returned by the listCalendarEvents function
    synced_calendar_event  Google events already synced into ``activities``

Each converter returns None when the record has no usable start time, so
callers can drop it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field

from src.crm.core.dates import safe_datetime


class EventSource(str, Enum):
    """Which feed produced an event. Each feed replaces only its own events."""

    CRM_APPOINTMENT = "crm_appointment"
    GOOGLE_CALENDAR = "google_calendar"
    SYNCED_CALENDAR_EVENT = "synced_calendar_event"


SOURCE_COLORS: dict[EventSource, str] = {
    EventSource.CRM_APPOINTMENT: "#1976d2",
    EventSource.GOOGLE_CALENDAR: "#4caf50",
    EventSource.SYNCED_CALENDAR_EVENT: "#4caf50",
}


class RelatedEntity(BaseModel):
    type: str
    id: str
    name: str | None = None


class CalendarEvent(BaseModel):
    """One entry on the merged calendar."""

    id: str
    title: str
    start: datetime
    end: datetime
    type: EventSource
    color: str
    description: str | None = None
    location: str | None = None
    attendees: list[Any] = Field(default_factory=list)
    related_to: RelatedEntity | None = None

    @computed_field
    @property
    def deletable(self) -> bool:
        """Only CRM appointments can be deleted from the calendar."""
        return self.type == EventSource.CRM_APPOINTMENT


# ── Field helpers ───────────────────────────────────────────────────────────


def _first(data: Mapping[str, Any], *fields: str) -> Any:
    for field in fields:
        value = data.get(field)
        if value:
            return value
    return None


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _attendees(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _related(value: Any) -> RelatedEntity | None:
    if not isinstance(value, Mapping):
        return None
    entity_type, entity_id = value.get("type"), value.get("id")
    if not entity_type or not entity_id:
        return None
    return RelatedEntity(type=str(entity_type), id=str(entity_id), name=_text(value.get("name")))


def _google_time(value: Any) -> Any:
    # {"dateTime": "..."} for timed events, {"date": "YYYY-MM-DD"} for all-day
    if isinstance(value, Mapping):
        return value.get("dateTime") or value.get("date")
    return value


# ── Converters ──────────────────────────────────────────────────────────────


def event_from_appointment(task: Mapping[str, Any]) -> CalendarEvent | None:
    """Convert a CRM appointment task document."""
    start = safe_datetime(_first(task, "startTime", "scheduledDate", "dueDate"))
    if start is None:
        return None
    end = safe_datetime(_first(task, "endTime", "scheduledDate", "dueDate")) or start
    return CalendarEvent(
        id=str(task.get("id", "")),
        title=_first(task, "title", "name") or "Untitled Appointment",
        start=start,
        end=end,
        type=EventSource.CRM_APPOINTMENT,
        color=SOURCE_COLORS[EventSource.CRM_APPOINTMENT],
        description=_text(_first(task, "description", "notes")),
        location=_text(task.get("location")),
        attendees=_attendees(task.get("attendees")),
        related_to=_related(task.get("relatedTo")),
    )


def event_from_google(event: Mapping[str, Any]) -> CalendarEvent | None:
    """Convert a Google Calendar API event as returned by listCalendarEvents."""
    start = safe_datetime(_google_time(event.get("start")))
    if start is None:
        return None
    end = safe_datetime(_google_time(event.get("end"))) or start
    return CalendarEvent(
        id=str(event.get("id", "")),
        title=event.get("summary") or "Untitled Event",
        start=start,
        end=end,
        type=EventSource.GOOGLE_CALENDAR,
        color=SOURCE_COLORS[EventSource.GOOGLE_CALENDAR],
        description=_text(event.get("description")),
        location=_text(event.get("location")),
        attendees=_attendees(event.get("attendees")),
        related_to=_related(event.get("relatedTo")),
    )


def event_from_activity(activity: Mapping[str, Any]) -> CalendarEvent | None:
    """Convert a ``calendar_event`` activity synced from Google. Start and end coincide."""
    start = safe_datetime(activity.get("date"))
    if start is None:
        return None
    return CalendarEvent(
        id=str(activity.get("calendarEventId") or activity.get("id", "")),
        title=activity.get("title") or "Calendar Event",
        start=start,
        end=start,
        type=EventSource.SYNCED_CALENDAR_EVENT,
        color=SOURCE_COLORS[EventSource.SYNCED_CALENDAR_EVENT],
        description=_text(activity.get("description")),
        location=_text(activity.get("location")),
        attendees=_attendees(activity.get("attendees")),
        related_to=_related(activity.get("relatedTo")),
    )


CONVERTERS = {
    EventSource.CRM_APPOINTMENT: event_from_appointment,
    EventSource.GOOGLE_CALENDAR: event_from_google,
    EventSource.SYNCED_CALENDAR_EVENT: event_from_activity,
}


def convert_all(source: EventSource, records: Iterable[Mapping[str, Any]]) -> list[CalendarEvent]:
    """Convert raw records of one source, dropping those without a start time."""
    convert = CONVERTERS[source]
    events = (convert(r) for r in records if isinstance(r, Mapping))
    return [e for e in events if e is not None]


# ── Display helpers ─────────────────────────────────────────────────────────


def attendee_label(attendee: Any) -> str:
    """Email, display name, or name of an attendee entry (string or object)."""
    if not attendee:
        return ""
    if isinstance(attendee, str):
        return attendee
    if isinstance(attendee, Mapping):
        return attendee.get("email") or attendee.get("displayName") or attendee.get("name") or ""
    return ""


def resolve_related_name(
    related: RelatedEntity | None,
    contacts: Sequence[Mapping[str, Any]] = (),
    companies: Sequence[Mapping[str, Any]] = (),
    deals: Sequence[Mapping[str, Any]] = (),
) -> str | None:
    """Current display name of the entity an event is tied to.

    Looks the entity up in the preloaded collections and falls back to the
    name captured on the event.
    """
    if related is None:
        return None
    lookup = {
        "contact": (contacts, ("fullName", "name")),
        "company": (companies, ("companyName", "name")),
        "deal": (deals, ("name",)),
    }.get(related.type)
    if lookup is not None:
        records, name_fields = lookup
        for record in records:
            if record.get("id") == related.id:
                name = _first(record, *name_fields)
                if name:
                    return name
                break
    return related.name
