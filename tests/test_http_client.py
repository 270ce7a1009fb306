"""Tests for the PostgREST store client, using httpx's mock transport."""

import json
from datetime import date, datetime, timezone

import httpx
import pytest

from door_terminal.backend.http_client import GUEST_COLUMNS, RestGuestStore
from door_terminal.errors import RemoteError

GUEST_ROW = {
    "id": "g-1",
    "event_id": "evt-1",
    "first_name": "Ana",
    "last_name": "Pérez",
    "ci": "12345678",
    "checked_in_at": None,
}


def make_store(settings, handler):
    return RestGuestStore(settings, transport=httpx.MockTransport(handler))


class TestRestGuestStore:
    @pytest.mark.asyncio
    async def test_find_event_by_code(self, settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{
                "id": "evt-1",
                "name": "Fiesta",
                "event_date": "2026-03-14",
                "event_code": "AB12CD",
                "door_pin_hash": "abc123",
            }])

        store = make_store(settings, handler)
        event = await store.find_event_by_code("AB12CD")

        assert event.id == "evt-1"
        assert event.event_date == date(2026, 3, 14)
        assert event.pin_fingerprint == "abc123"
        request = seen[0]
        assert request.url.path == "/rest/v1/events"
        assert request.url.params["event_code"] == "eq.AB12CD"
        assert request.headers["apikey"] == "test-key"
        assert request.headers["authorization"] == "Bearer test-key"
        await store.aclose()

    @pytest.mark.asyncio
    async def test_missing_event(self, settings):
        store = make_store(settings, lambda request: httpx.Response(200, json=[]))
        assert await store.find_event_by_code("NOPE00") is None
        await store.aclose()

    @pytest.mark.asyncio
    async def test_prefix_query_shape(self, settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[GUEST_ROW])

        store = make_store(settings, handler)
        guests = await store.find_guests_by_prefix("evt-1", "123", 12)

        assert [g.ci for g in guests] == ["12345678"]
        params = seen[0].url.params
        assert params["event_id"] == "eq.evt-1"
        assert params["ci"] == "like.123*"
        assert params["order"] == "ci.asc"
        assert params["limit"] == "12"
        assert params["select"] == GUEST_COLUMNS
        await store.aclose()

    @pytest.mark.asyncio
    async def test_exact_query(self, settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        store = make_store(settings, handler)
        assert await store.find_guest_by_exact_ci("evt-1", "12345678") is None
        assert seen[0].url.params["ci"] == "eq.12345678"
        await store.aclose()

    @pytest.mark.asyncio
    async def test_mark_checked_in_returns_persisted_row(self, settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[dict(GUEST_ROW, checked_in_at="2026-03-14T21:30:15Z")])

        store = make_store(settings, handler)
        stamp = datetime(2026, 3, 14, 21, 30, 15, 999, tzinfo=timezone.utc)
        guest = await store.mark_checked_in("g-1", stamp)

        assert guest.checked_in_at == datetime(2026, 3, 14, 21, 30, 15, tzinfo=timezone.utc)
        request = seen[0]
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.g-1"
        assert request.headers["prefer"] == "return=representation"
        assert json.loads(request.content) == {"checked_in_at": stamp.isoformat()}
        await store.aclose()

    @pytest.mark.asyncio
    async def test_mark_checked_in_accepts_trimmed_fraction(self, settings):
        row = dict(GUEST_ROW, checked_in_at="2026-03-14T21:30:15.12345+00:00")
        store = make_store(settings, lambda request: httpx.Response(200, json=[row]))

        guest = await store.mark_checked_in("g-1", datetime.now(timezone.utc))

        assert guest.checked_in_at == datetime(2026, 3, 14, 21, 30, 15, 123450, tzinfo=timezone.utc)
        await store.aclose()

    @pytest.mark.asyncio
    async def test_mark_checked_in_without_representation(self, settings):
        store = make_store(settings, lambda request: httpx.Response(200, json=[]))
        with pytest.raises(RemoteError):
            await store.mark_checked_in("g-404", datetime.now(timezone.utc))
        await store.aclose()

    @pytest.mark.asyncio
    async def test_http_error_status(self, settings):
        store = make_store(settings, lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(RemoteError) as exc_info:
            await store.find_guests_by_prefix("evt-1", "123", 12)
        assert exc_info.value.user_message == "The store rejected the request"
        await store.aclose()

    @pytest.mark.asyncio
    async def test_connection_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        store = make_store(settings, handler)
        with pytest.raises(RemoteError) as exc_info:
            await store.find_event_by_code("AB12CD")
        assert exc_info.value.user_message == "Cannot reach the store"
        await store.aclose()

    @pytest.mark.asyncio
    async def test_timeout(self, settings):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        store = make_store(settings, handler)
        with pytest.raises(RemoteError) as exc_info:
            await store.find_guest_by_exact_ci("evt-1", "12345678")
        assert exc_info.value.user_message == "The store did not answer in time"
        await store.aclose()

    @pytest.mark.asyncio
    async def test_malformed_payloads(self, settings):
        store = make_store(settings, lambda request: httpx.Response(200, json={"oops": True}))
        with pytest.raises(RemoteError):
            await store.find_guests_by_prefix("evt-1", "123", 12)
        await store.aclose()

        store = make_store(settings, lambda request: httpx.Response(200, json=[{"id": "g-1"}]))
        with pytest.raises(RemoteError):
            await store.find_guest_by_exact_ci("evt-1", "12345678")
        await store.aclose()
