"""Tests for the callable-functions client and its error mapping.

Uses httpx.MockTransport so no network access is needed.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from src.crm.functions.client import CloudFunctionsClient
from src.crm.functions.errors import (
    DEFAULT_MESSAGE,
    FunctionsError,
    friendly_message,
    is_calendar_not_connected,
    normalize_code,
)

BASE_URL = "https://us-central1-demo.cloudfunctions.net"


def _client(handler, id_token: str | None = None) -> tuple[CloudFunctionsClient, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = CloudFunctionsClient(BASE_URL, id_token=id_token, transport=httpx.MockTransport(_record))
    return client, seen


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content)


# ── Wire protocol ────────────────────────────────────────────────────────────


class TestCall:
    @pytest.mark.asyncio
    async def test_posts_data_envelope_and_returns_result(self) -> None:
        client, seen = _client(lambda r: httpx.Response(200, json={"result": {"ok": True}}), id_token="tok")

        result = await client.call("doThing", {"a": 1})

        assert result == {"ok": True}
        request = seen[0]
        assert str(request.url) == f"{BASE_URL}/doThing"
        assert _body(request) == {"data": {"a": 1}}
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self) -> None:
        client, seen = _client(lambda r: httpx.Response(200, json={"result": None}))
        await client.call("ping")
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_with_token_overrides(self) -> None:
        client, seen = _client(lambda r: httpx.Response(200, json={"result": 1}), id_token="a")
        await client.with_token("b").call("ping")
        assert seen[0].headers["Authorization"] == "Bearer b"

    @pytest.mark.asyncio
    async def test_error_body_raises_with_code(self) -> None:
        client, _ = _client(
            lambda r: httpx.Response(
                403, json={"error": {"status": "PERMISSION_DENIED", "message": "nope"}}
            )
        )
        with pytest.raises(FunctionsError) as exc_info:
            await client.call("secret")
        assert exc_info.value.code == "functions/permission-denied"
        assert exc_info.value.message == "nope"
        assert exc_info.value.function == "secret"

    @pytest.mark.asyncio
    async def test_bare_http_error(self) -> None:
        client, _ = _client(lambda r: httpx.Response(503, text="busy"))
        with pytest.raises(FunctionsError) as exc_info:
            await client.call("x")
        assert exc_info.value.code == "functions/unavailable"

    @pytest.mark.asyncio
    async def test_missing_result(self) -> None:
        client, _ = _client(lambda r: httpx.Response(200, json={"data": 1}))
        with pytest.raises(FunctionsError) as exc_info:
            await client.call("x")
        assert exc_info.value.code == "functions/internal"

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self) -> None:
        def _fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, seen = _client(_fail)
        with pytest.raises(FunctionsError) as exc_info:
            await client.call("x")
        assert exc_info.value.code == "functions/unavailable"
        # Single attempt, no retry
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_deadline_exceeded(self) -> None:
        def _slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client, _ = _client(_slow)
        with pytest.raises(FunctionsError) as exc_info:
            await client.call("x")
        assert exc_info.value.code == "functions/deadline-exceeded"


# ── Named functions ──────────────────────────────────────────────────────────


class TestNamedFunctions:
    @pytest.mark.asyncio
    async def test_list_calendar_events_payload(self) -> None:
        client, seen = _client(
            lambda r: httpx.Response(200, json={"result": {"success": True, "events": [{"id": "g1"}]}})
        )
        start = datetime(2024, 6, 15, 12, 0, 0, 123456, tzinfo=timezone.utc)

        events = await client.list_calendar_events("u1", max_results=10, time_min=start, lookahead_days=7)

        assert events == [{"id": "g1"}]
        data = _body(seen[0])["data"]
        assert data == {
            "userId": "u1",
            "maxResults": 10,
            "timeMin": "2024-06-15T12:00:00.123Z",
            "timeMax": "2024-06-22T12:00:00.123Z",
        }

    @pytest.mark.asyncio
    async def test_list_calendar_events_unsuccessful_is_empty(self) -> None:
        client, _ = _client(lambda r: httpx.Response(200, json={"result": {"success": False}}))
        assert await client.list_calendar_events("u1") == []

    @pytest.mark.asyncio
    async def test_salespeople_unwrapped(self) -> None:
        client, seen = _client(
            lambda r: httpx.Response(200, json={"result": {"salespeople": [{"id": "u1"}]}})
        )
        assert await client.get_salespeople_for_tenant("acme") == [{"id": "u1"}]
        assert _body(seen[0]) == {"data": {"tenantId": "acme"}}

    @pytest.mark.asyncio
    async def test_null_result_unwraps_to_default(self) -> None:
        client, _ = _client(lambda r: httpx.Response(200, json={"result": None}))
        assert await client.get_global_context() == {}
        assert await client.list_scenarios() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [[{"id": "u1"}], "ok", 3])
    @pytest.mark.parametrize(
        "method,args",
        [
            ("get_global_context", ()),
            ("list_scenarios", ()),
            ("get_salespeople_for_tenant", ("acme",)),
        ],
    )
    async def test_non_object_result_is_internal_error(self, result, method, args) -> None:
        client, _ = _client(lambda r: httpx.Response(200, json={"result": result}))

        with pytest.raises(FunctionsError) as exc_info:
            await getattr(client, method)(*args)

        assert exc_info.value.code == "functions/internal"

    @pytest.mark.asyncio
    async def test_manage_associations_payload(self) -> None:
        client, seen = _client(lambda r: httpx.Response(200, json={"result": {"success": True}}))
        await client.manage_associations("acme", "add", "contact", "k1", "company", "c1")
        assert _body(seen[0])["data"] == {
            "action": "add",
            "sourceEntityType": "contact",
            "sourceEntityId": "k1",
            "targetEntityType": "company",
            "targetEntityId": "c1",
            "tenantId": "acme",
        }

    @pytest.mark.asyncio
    async def test_cleanup_plain_https(self) -> None:
        client, seen = _client(lambda r: httpx.Response(200, json={"success": True, "result": {"fixed": 3}}))

        body = await client.cleanup_contact_company_associations("acme", "id-token")

        assert body == {"success": True, "result": {"fixed": 3}}
        assert str(seen[0].url).endswith("/cleanupContactCompanyAssociationsHttp")
        assert _body(seen[0]) == {"tenantId": "acme"}
        assert seen[0].headers["Authorization"] == "Bearer id-token"

    @pytest.mark.asyncio
    async def test_cleanup_error_status(self) -> None:
        client, _ = _client(lambda r: httpx.Response(401, json={"error": "expired"}))
        with pytest.raises(FunctionsError) as exc_info:
            await client.cleanup_contact_company_associations("acme", "bad")
        assert exc_info.value.code == "functions/unauthenticated"
        assert exc_info.value.message == "expired"


# ── Error codes and messages ─────────────────────────────────────────────────


class TestErrors:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("PERMISSION_DENIED", "functions/permission-denied"),
            ("not-found", "functions/not-found"),
            ("functions/internal", "functions/internal"),
            (None, "functions/unknown"),
        ],
    )
    def test_normalize_code(self, raw, expected) -> None:
        assert normalize_code(raw) == expected

    def test_friendly_known_code(self) -> None:
        error = FunctionsError("unauthenticated", "token expired")
        assert friendly_message(error) == "Your session has expired. Please sign in again."

    def test_friendly_cors(self) -> None:
        error = FunctionsError("unknown", "blocked by CORS policy")
        assert friendly_message(error).startswith("Network error")

    def test_friendly_falls_back_to_message(self) -> None:
        assert friendly_message(FunctionsError("aborted", "Try later")) == "Try later"
        assert friendly_message(FunctionsError("aborted")) == DEFAULT_MESSAGE

    def test_from_http_status(self) -> None:
        assert FunctionsError.from_http_status(429).code == "functions/resource-exhausted"
        assert FunctionsError.from_http_status(502).code == "functions/internal"
        assert FunctionsError.from_http_status(418).code == "functions/unknown"

    @pytest.mark.parametrize(
        "error,expected",
        [
            (FunctionsError("failed-precondition", "x"), True),
            (FunctionsError("internal", "Calendar not connected for user"), True),
            (FunctionsError("internal", "boom"), False),
            (ValueError("Calendar not connected"), False),
        ],
    )
    def test_calendar_not_connected(self, error, expected) -> None:
        assert is_calendar_not_connected(error) is expected
