"""REST API endpoints for the merged calendar and the user's calendar view.

Each request loads the three feeds once through CalendarFeed. Google
Calendar is best effort: when listCalendarEvents fails the response still
carries the CRM appointments and synced activities, with
``google_connected`` set to false.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.crm.api.deps import (
    CurrentUser,
    functions_http_error,
    get_current_user,
    get_functions_client,
    get_redis,
    get_tenant,
    require_state,
)
from src.crm.calendar.events import CalendarEvent, EventSource, event_from_appointment, resolve_related_name
from src.crm.calendar.feed import CalendarFeed
from src.crm.calendar.preferences import CalendarView, UserPreferences
from src.crm.config import get_settings
from src.crm.core.redis import TenantRedis
from src.crm.core.tenant import TenantContext
from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import FunctionsError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])

# relatedTo.type -> app.state repository attribute
RELATED_REPOSITORIES = {
    "contact": "contact_repository",
    "company": "company_repository",
    "deal": "deal_repository",
}


# ── Schemas ──────────────────────────────────────────────────────────────────


class CalendarEventResponse(CalendarEvent):
    related_name: str | None = None


class CalendarEventsResponse(BaseModel):
    events: list[CalendarEventResponse] = Field(default_factory=list)
    total: int = 0
    google_connected: bool = True


class CalendarViewBody(BaseModel):
    view: CalendarView


# ── Helpers ──────────────────────────────────────────────────────────────────


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown time zone: {name}",
        )


async def _related_records(
    request: Request, tenant_id: str, events: list[CalendarEvent]
) -> dict[str, list[dict[str, Any]]]:
    """Load only the collections that some event refers to."""
    wanted = {e.related_to.type for e in events if e.related_to is not None}
    records: dict[str, list[dict[str, Any]]] = {}
    for entity_type in wanted & RELATED_REPOSITORIES.keys():
        repo = getattr(request.app.state, RELATED_REPOSITORIES[entity_type], None)
        if repo is not None:
            records[entity_type] = await repo.list(tenant_id)
    return records


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/events", response_model=CalendarEventsResponse)
async def list_events(
    request: Request,
    day: date | None = Query(None, description="Only events starting on this day"),
    source: EventSource | None = Query(None),
    tz: str = Query("UTC", description="IANA time zone used to match ``day``"),
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> CalendarEventsResponse:
    settings = get_settings()
    feed = CalendarFeed(
        tenant.tenant_id,
        user.id,
        tasks=require_state(request, "task_repository", "Task repository"),
        activities=require_state(request, "activity_repository", "Activity repository"),
        functions=functions,
        max_results=settings.CALENDAR_MAX_RESULTS,
        lookahead_days=settings.CALENDAR_LOOKAHEAD_DAYS,
    )
    aggregator = await feed.load()
    google_connected = EventSource.GOOGLE_CALENDAR in aggregator.sources()

    if day is not None:
        events = aggregator.events_for_day(day, _zone(tz))
    else:
        events = sorted(aggregator.events(), key=lambda e: e.start)
    if source is not None:
        events = [e for e in events if e.type == source]

    related = await _related_records(request, tenant.tenant_id, events)
    return CalendarEventsResponse(
        events=[
            CalendarEventResponse(
                **e.model_dump(),
                related_name=resolve_related_name(
                    e.related_to,
                    contacts=related.get("contact", ()),
                    companies=related.get("company", ()),
                    deals=related.get("deal", ()),
                ),
            )
            for e in events
        ],
        total=len(events),
        google_connected=google_connected,
    )


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
    functions: CloudFunctionsClient = Depends(get_functions_client),
) -> None:
    """Delete a CRM appointment through the deleteTask function.

    Google Calendar events are read-only here and answer 409.
    """
    tasks = require_state(request, "task_repository", "Task repository")
    task = await tasks.get(tenant.tenant_id, event_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found",
        )
    event = event_from_appointment(task) if task.get("classification") == "appointment" else None
    if event is None or not event.deletable:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only CRM appointments can be deleted",
        )

    try:
        await functions.delete_task(tenant.tenant_id, event_id)
    except FunctionsError as e:
        raise functions_http_error(e)
    logger.info("appointment_deleted", tenant_id=tenant.tenant_id, user_id=user.id, task_id=event_id)


@router.get("/view", response_model=CalendarViewBody)
async def get_view(
    user: CurrentUser = Depends(get_current_user),
    redis: TenantRedis = Depends(get_redis),
) -> CalendarViewBody:
    return CalendarViewBody(view=await UserPreferences(redis, user.id).get_calendar_view())


@router.put("/view", response_model=CalendarViewBody)
async def set_view(
    body: CalendarViewBody,
    user: CurrentUser = Depends(get_current_user),
    redis: TenantRedis = Depends(get_redis),
) -> CalendarViewBody:
    return CalendarViewBody(view=await UserPreferences(redis, user.id).set_calendar_view(body.view))
