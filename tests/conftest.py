"""Pytest configuration and shared fixtures."""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from door_terminal.backend.store import GuestStore
from door_terminal.config import DoorSettings, Settings
from door_terminal.errors import RemoteError
from door_terminal.fingerprint import fingerprint
from door_terminal.models import Event, Guest
from door_terminal.session_manager import DoorSession

EVENT_CODE = "AB12CD"
DOOR_PIN = "4821"
FIXED_NOW = datetime(2026, 3, 14, 21, 30, 15, 123456, tzinfo=timezone.utc)


class FakeGuestStore(GuestStore):
    """In-memory store. Prefix lookups and check-ins can be held open with asyncio events."""

    def __init__(self, events=(), guests=()):
        self.events = {e.event_code: e for e in events}
        self.guests = {g.id: g for g in guests}
        self.calls = []
        self.failing = set()
        self.prefix_gates = {}
        self.exact_gate = None
        self.checkin_gate = None
        self.closed = False

    def count(self, operation):
        return sum(1 for name, _ in self.calls if name == operation)

    def _maybe_fail(self, operation):
        if operation in self.failing:
            raise RemoteError("Cannot reach the store", log_message=f"{operation}: simulated outage")

    async def find_event_by_code(self, code):
        self.calls.append(("find_event_by_code", (code,)))
        self._maybe_fail("find_event_by_code")
        return self.events.get(code)

    async def find_guests_by_prefix(self, event_id, prefix, limit):
        self.calls.append(("find_guests_by_prefix", (event_id, prefix, limit)))
        gate = self.prefix_gates.get(prefix)
        if gate is not None:
            await gate.wait()
        self._maybe_fail("find_guests_by_prefix")
        matches = [g for g in self.guests.values() if g.event_id == event_id and g.ci.startswith(prefix)]
        return sorted(matches, key=lambda g: g.ci)[:limit]

    async def find_guest_by_exact_ci(self, event_id, ci):
        self.calls.append(("find_guest_by_exact_ci", (event_id, ci)))
        if self.exact_gate is not None:
            await self.exact_gate.wait()
        self._maybe_fail("find_guest_by_exact_ci")
        return next((g for g in self.guests.values() if g.event_id == event_id and g.ci == ci), None)

    async def mark_checked_in(self, guest_id, timestamp):
        self.calls.append(("mark_checked_in", (guest_id, timestamp)))
        if self.checkin_gate is not None:
            await self.checkin_gate.wait()
        self._maybe_fail("mark_checked_in")
        # the database stores whole seconds
        stored = replace(self.guests[guest_id], checked_in_at=timestamp.replace(microsecond=0))
        self.guests[guest_id] = stored
        return stored

    async def aclose(self):
        self.closed = True


async def settle(seconds=0.0):
    """Let background tasks run."""
    await asyncio.sleep(seconds)
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def settings():
    return Settings(
        store_api_url="http://store.test/",
        store_api_key="test-key",
        door=DoorSettings(debounce_ms=40, checked_in_display_seconds=0.1),
    )


@pytest.fixture
def event():
    return Event(id="evt-1", name="Fiesta de Primavera", event_code=EVENT_CODE, pin_fingerprint=fingerprint(DOOR_PIN))


@pytest.fixture
def other_event():
    return Event(id="evt-2", name="After Party", event_code="ZX98QW", pin_fingerprint=fingerprint("9999"))


@pytest.fixture
def guests():
    return [
        Guest(id="g-1", event_id="evt-1", first_name="Ana", last_name="Pérez", ci="12345678"),
        Guest(id="g-2", event_id="evt-1", first_name="Bruno", last_name="Silva", ci="12340000"),
        Guest(id="g-3", event_id="evt-1", first_name="Carla", last_name="Méndez", ci="12399999"),
        Guest(
            id="g-4",
            event_id="evt-1",
            first_name="Diego",
            last_name="Rodríguez",
            ci="7654321",
            checked_in_at=datetime(2026, 3, 14, 20, 0, tzinfo=timezone.utc),
        ),
        Guest(id="g-5", event_id="evt-2", first_name="Elena", last_name="Gómez", ci="12345678"),
    ]


@pytest.fixture
def store(event, other_event, guests):
    return FakeGuestStore(events=[event, other_event], guests=guests)


@pytest.fixture
def session(store, settings):
    return DoorSession(store, settings=settings, clock=lambda: FIXED_NOW)


@pytest.fixture
def unlock(session):
    async def _unlock(code=EVENT_CODE, pin=DOOR_PIN):
        await session.load_event(code)
        await session.submit_pin(pin)
        return session

    return _unlock
