"""API tests for the calendar and navigation-session endpoints.

The callable-functions client is a spec'd MagicMock; Redis is the in-memory
FakeRedis from conftest.
"""

from __future__ import annotations

import json

import pytest

from src.crm.functions.errors import FunctionsError

API = "/api/v1"
TEST_USER = "user-1"

APPOINTMENT = {
    "id": "t1",
    "classification": "appointment",
    "assignedTo": TEST_USER,
    "title": "Site visit",
    "startTime": "2024-06-15T14:00:00Z",
    "endTime": "2024-06-15T15:00:00Z",
    "relatedTo": {"type": "company", "id": "c1", "name": "Old Name"},
}

GOOGLE_EVENT = {
    "id": "g1",
    "summary": "Standup",
    "start": {"dateTime": "2024-06-15T09:00:00Z"},
    "end": {"dateTime": "2024-06-15T09:15:00Z"},
}

SYNCED_ACTIVITY = {
    "id": "a1",
    "type": "calendar_event",
    "createdBy": TEST_USER,
    "calendarEventId": "g-old",
    "title": "Synced lunch",
    "date": "2024-06-16T12:00:00Z",
}


# ── Calendar events ──────────────────────────────────────────────────────────


class TestCalendarEvents:
    @pytest.mark.asyncio
    async def test_merges_three_sources(self, client, repos, functions_client) -> None:
        repos["task_repository"].seed(APPOINTMENT, {"id": "t2", "classification": "todo", "assignedTo": TEST_USER})
        repos["activity_repository"].seed(SYNCED_ACTIVITY)
        repos["company_repository"].seed({"id": "c1", "companyName": "Acme Staffing"})
        functions_client.list_calendar_events.return_value = [GOOGLE_EVENT]

        response = await client.get(f"{API}/calendar/events")

        assert response.status_code == 200
        body = response.json()
        assert body["google_connected"] is True
        assert [e["id"] for e in body["events"]] == ["g1", "t1", "g-old"]
        appointment = body["events"][1]
        assert appointment["type"] == "crm_appointment"
        assert appointment["deletable"] is True
        assert appointment["related_name"] == "Acme Staffing"
        assert body["events"][0]["deletable"] is False

        call = functions_client.list_calendar_events.await_args
        assert call.args == (TEST_USER,)
        assert set(call.kwargs) == {"max_results", "lookahead_days"}

    @pytest.mark.asyncio
    async def test_google_failure_keeps_crm_events(self, client, repos, functions_client) -> None:
        repos["task_repository"].seed(APPOINTMENT)
        functions_client.list_calendar_events.side_effect = FunctionsError(
            "failed-precondition", "Calendar not connected"
        )

        response = await client.get(f"{API}/calendar/events")

        body = response.json()
        assert body["google_connected"] is False
        assert [e["id"] for e in body["events"]] == ["t1"]
        assert body["events"][0]["related_name"] == "Old Name"

    @pytest.mark.asyncio
    async def test_day_and_source_filters(self, client, repos, functions_client) -> None:
        repos["task_repository"].seed(APPOINTMENT)
        repos["activity_repository"].seed(SYNCED_ACTIVITY)
        functions_client.list_calendar_events.return_value = [GOOGLE_EVENT]

        day = await client.get(f"{API}/calendar/events", params={"day": "2024-06-15", "tz": "UTC"})
        synced = await client.get(f"{API}/calendar/events", params={"source": "synced_calendar_event"})

        assert [e["id"] for e in day.json()["events"]] == ["g1", "t1"]
        assert [e["id"] for e in synced.json()["events"]] == ["g-old"]

    @pytest.mark.asyncio
    async def test_unknown_time_zone_400(self, client, functions_client) -> None:
        functions_client.list_calendar_events.return_value = []

        response = await client.get(f"{API}/calendar/events", params={"day": "2024-06-15", "tz": "Mars/Olympus"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_503_without_task_repository(self, bare_client) -> None:
        response = await bare_client.get(f"{API}/calendar/events")
        assert response.status_code == 503
        assert "not initialized" in response.json()["detail"]


class TestDeleteEvent:
    @pytest.mark.asyncio
    async def test_deletes_appointment(self, client, repos, functions_client) -> None:
        repos["task_repository"].seed(APPOINTMENT)

        response = await client.delete(f"{API}/calendar/events/t1")

        assert response.status_code == 204
        functions_client.delete_task.assert_awaited_once_with("test-tenant", "t1")

    @pytest.mark.asyncio
    async def test_unknown_event_404(self, client, functions_client) -> None:
        response = await client.delete(f"{API}/calendar/events/g1")

        assert response.status_code == 404
        functions_client.delete_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_appointment_409(self, client, repos, functions_client) -> None:
        repos["task_repository"].seed({"id": "t2", "classification": "todo", "title": "Call back"})

        response = await client.delete(f"{API}/calendar/events/t2")

        assert response.status_code == 409
        functions_client.delete_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_function_error_mapped(self, client, repos, functions_client) -> None:
        repos["task_repository"].seed(APPOINTMENT)
        functions_client.delete_task.side_effect = FunctionsError("unavailable", "")

        response = await client.delete(f"{API}/calendar/events/t1")

        assert response.status_code == 502
        assert response.json()["detail"]["message"].startswith("Service temporarily unavailable")


class TestCalendarView:
    @pytest.mark.asyncio
    async def test_default_month(self, client) -> None:
        response = await client.get(f"{API}/calendar/view")
        assert response.json() == {"view": "month"}

    @pytest.mark.asyncio
    async def test_set_and_read_back(self, client, fake_redis) -> None:
        response = await client.put(f"{API}/calendar/view", json={"view": "day"})

        assert response.json() == {"view": "day"}
        assert fake_redis.data[f"prefs:{TEST_USER}:calendar_view"] == "day"
        assert (await client.get(f"{API}/calendar/view")).json() == {"view": "day"}

    @pytest.mark.asyncio
    async def test_invalid_view_422(self, client) -> None:
        response = await client.put(f"{API}/calendar/view", json={"view": "week"})
        assert response.status_code == 422


# ── Navigation session ───────────────────────────────────────────────────────


class TestNavigationSession:
    @pytest.mark.asyncio
    async def test_start_from_url_params(self, client, fake_redis) -> None:
        response = await client.post(
            f"{API}/session/navigation",
            params={"tab": "opportunities", "companyState": "TX"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["active_tab"] == "deals"
        assert body["company_state"] == "TX"
        assert body["query_params"] == {"tab": "deals", "companyState": "TX"}

        key = f"session:{TEST_USER}:navigation"
        assert json.loads(fake_redis.data[key])["active_tab"] == "deals"
        assert fake_redis.ttl[key] == 43200

    @pytest.mark.asyncio
    async def test_get_without_session_returns_defaults(self, client) -> None:
        response = await client.get(f"{API}/session/navigation")

        body = response.json()
        assert body["active_tab"] == "tasks"
        assert body["company_filter"] == "all"
        assert body["query_params"] == {"tab": "tasks"}

    @pytest.mark.asyncio
    async def test_partial_update(self, client) -> None:
        await client.post(f"{API}/session/navigation", params={"companyState": "TX"})

        response = await client.put(
            f"{API}/session/navigation",
            json={"deal_filter": "my", "search_term": "acme", "active_tab": None},
        )

        body = response.json()
        assert body["deal_filter"] == "my"
        assert body["search_term"] == "acme"
        assert body["active_tab"] == "tasks"
        assert body["company_state"] == "TX"

    @pytest.mark.asyncio
    async def test_state_filter_cleared_with_null(self, client) -> None:
        await client.post(f"{API}/session/navigation", params={"companyState": "TX"})

        response = await client.put(f"{API}/session/navigation", json={"company_state": None})

        assert response.json()["company_state"] is None

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, client) -> None:
        response = await client.put(f"{API}/session/navigation", json={"colour": "blue"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_clear(self, client, fake_redis) -> None:
        await client.post(f"{API}/session/navigation")

        response = await client.delete(f"{API}/session/navigation")

        assert response.status_code == 204
        assert fake_redis.data == {}
