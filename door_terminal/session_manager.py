"""Session orchestration for the door terminal: PIN gate, CI autocomplete and check-in."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from .backend.store import GuestStore
from .config import Settings, get_settings
from .debounce import QueryDebouncer
from .errors import (
    AlreadyCheckedInError,
    AuthenticationError,
    DoorError,
    GateLockedError,
    RemoteError,
    ValidationError,
)
from .fingerprint import matches_fingerprint, normalize_digits
from .models import Event, Guest
from .stale_guard import StaleResultGuard
from .state import GatePhase, LookupPhase, TerminalEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionContext:
    """Everything the terminal knows about the currently loaded event.

    Replaced wholesale on every event load, which is what re-locks the gate
    and orphans any request still in flight for the previous event.
    """

    event_code: Optional[str] = None
    event: Optional[Event] = None
    event_loading: bool = False
    event_message: Optional[str] = None
    gate: GatePhase = GatePhase.LOCKED
    gate_message: Optional[str] = None
    pin_input: str = ""
    query: str = ""
    suggestions: List[Guest] = field(default_factory=list)
    suggestions_loading: bool = False
    lookup: LookupPhase = LookupPhase.IDLE
    guest: Optional[Guest] = None
    search_message: Optional[str] = None
    check_message: Optional[str] = None
    guard: StaleResultGuard = field(default_factory=StaleResultGuard)


class DoorSession:
    """Owns one terminal's gate session and publishes its state to UI subscribers."""

    def __init__(
        self,
        store: GuestStore,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self._door = self.settings.door
        self._store = store
        self._clock = clock
        self._ctx = SessionContext()
        self._ui_subscribers: List[asyncio.Queue[TerminalEvent]] = []
        self._debouncer = QueryDebouncer(delay_ms=self._door.debounce_ms, callback=self._on_committed_query)
        self._lookup_tasks: Set[asyncio.Task[None]] = set()
        self._reset_task: Optional[asyncio.Task[None]] = None

    @property
    def gate(self) -> GatePhase:
        return self._ctx.gate

    @property
    def lookup(self) -> LookupPhase:
        return self._ctx.lookup

    @property
    def event(self) -> Optional[Event]:
        return self._ctx.event

    @property
    def guest(self) -> Optional[Guest]:
        return self._ctx.guest

    @property
    def suggestions(self) -> List[Guest]:
        return list(self._ctx.suggestions)

    async def stop(self) -> None:
        logger.info("Stopping door session")
        await self._debouncer.aclose()
        self._cancel_reset()
        tasks = list(self._lookup_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._lookup_tasks.clear()
        await self._store.aclose()
        logger.info("Door session stopped")

    # ============================================================
    # UI SUBSCRIBERS
    # ============================================================

    def register_ui(self) -> asyncio.Queue[TerminalEvent]:
        queue: asyncio.Queue[TerminalEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[TerminalEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    async def _broadcast(self, event: TerminalEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest when a queue is full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _publish(self, *, error: Optional[str] = None) -> None:
        ctx = self._ctx
        await self._broadcast(
            TerminalEvent(type="state", data=self.snapshot(), gate=ctx.gate, lookup=ctx.lookup, error=error)
        )

    def snapshot(self) -> Dict[str, Any]:
        ctx = self._ctx
        return {
            "event_code": ctx.event_code,
            "event": ctx.event.public_dict() if ctx.event else None,
            "event_loading": ctx.event_loading,
            "event_message": ctx.event_message,
            "gate": ctx.gate.value,
            "gate_message": ctx.gate_message,
            "pin_length": len(ctx.pin_input),
            "query": ctx.query,
            "suggestions": [guest.to_dict() for guest in ctx.suggestions],
            "suggestions_loading": ctx.suggestions_loading,
            "show_suggestions": self._suggestions_visible(ctx),
            "lookup": ctx.lookup.value,
            "guest": ctx.guest.to_dict() if ctx.guest else None,
            "search_message": ctx.search_message,
            "check_message": ctx.check_message,
        }

    # ============================================================
    # GATE
    # ============================================================

    async def load_event(self, code: str) -> Dict[str, Any]:
        """Switch the terminal to another event. Always re-locks the gate."""
        code = (code or "").strip()
        self._debouncer.cancel()
        self._cancel_reset()
        ctx = self._ctx = SessionContext(event_code=code, event_loading=True)
        await self._publish()

        if not code:
            ctx.event_loading = False
            await self._fail(ctx, "event_message", ValidationError("Missing event code"))

        try:
            event = await self._store.find_event_by_code(code)
        except RemoteError as exc:
            if ctx is self._ctx:
                ctx.event_loading = False
                await self._fail(ctx, "event_message", RemoteError("Error loading event", log_message=str(exc)))
            raise

        if ctx is not self._ctx:
            logger.info("Event %s loaded after the terminal moved on; ignoring", code)
            return self.snapshot()

        ctx.event_loading = False
        if event is None:
            logger.warning("No event for door code %s", code)
            ctx.event_message = "Event not found"
        else:
            logger.info("Loaded event %s (%s); gate locked", event.event_code, event.id)
            ctx.event = event
        await self._publish()
        return self.snapshot()

    async def set_pin_text(self, raw: str) -> Dict[str, Any]:
        """Mirror the PIN field while it is being typed; only its length is ever published."""
        ctx = self._ctx
        if ctx.gate is GatePhase.LOCKED:
            ctx.pin_input = normalize_digits(raw)
            ctx.gate_message = None
            await self._publish()
        return self.snapshot()

    async def submit_pin(self, raw: Optional[str] = None) -> Dict[str, Any]:
        ctx = self._ctx
        if ctx.event is None:
            await self._fail(ctx, "gate_message", ValidationError("No event loaded"))
        if ctx.gate is GatePhase.UNLOCKED:
            return self.snapshot()

        pin = normalize_digits(ctx.pin_input if raw is None else raw)
        if not self._door.pin_min_digits <= len(pin) <= self._door.pin_max_digits:
            await self._fail(
                ctx,
                "gate_message",
                ValidationError(f"Invalid PIN ({self._door.pin_min_digits}-{self._door.pin_max_digits} digits)"),
            )

        matched = matches_fingerprint(pin, ctx.event.pin_fingerprint)
        del pin
        if not matched:
            logger.warning("Wrong PIN for event %s", ctx.event.event_code)
            await self._fail(ctx, "gate_message", AuthenticationError("Wrong PIN"))

        ctx.gate = GatePhase.UNLOCKED
        ctx.pin_input = ""
        ctx.gate_message = None
        logger.info("Gate unlocked for event %s", ctx.event.event_code)
        await self._publish()
        return self.snapshot()

    # ============================================================
    # AUTOCOMPLETE
    # ============================================================

    async def set_query_text(self, raw: str) -> Dict[str, Any]:
        """Take the CI field's latest value; the prefix lookup fires once typing settles."""
        ctx = self._ctx
        ctx.query = normalize_digits(raw)

        if ctx.lookup is LookupPhase.CHECKED_IN:
            self._cancel_reset()
        if ctx.lookup not in (LookupPhase.SEARCHING, LookupPhase.CHECKING_IN):
            ctx.lookup = LookupPhase.IDLE
            ctx.guest = None
            ctx.search_message = None
            ctx.check_message = None

        ctx.guard.invalidate()
        ctx.suggestions_loading = False
        self._debouncer.push(ctx.query)
        await self._publish()
        return self.snapshot()

    async def _on_committed_query(self, prefix: str) -> None:
        ctx = self._ctx
        if (
            ctx.event is None
            or ctx.gate is not GatePhase.UNLOCKED
            or len(prefix) < self._door.suggestion_min_digits
        ):
            ctx.guard.invalidate()
            ctx.suggestions = []
            ctx.suggestions_loading = False
            await self._publish()
            return

        tag = ctx.guard.issue()
        ctx.suggestions_loading = True
        await self._publish()
        task = asyncio.create_task(self._load_suggestions(ctx, tag, prefix), name=f"suggest-{tag}")
        self._lookup_tasks.add(task)
        task.add_done_callback(self._lookup_tasks.discard)

    async def _load_suggestions(self, ctx: SessionContext, tag: int, prefix: str) -> None:
        try:
            guests = await self._store.find_guests_by_prefix(ctx.event.id, prefix, self._door.suggestion_limit)
        except RemoteError as exc:
            logger.warning("Suggestion lookup %d failed: %s", tag, exc)
            if self._is_current(ctx, tag):
                ctx.suggestions_loading = False
                await self._publish()
            return

        if not self._is_current(ctx, tag):
            logger.debug("Dropping stale suggestions for tag %d (current %d)", tag, ctx.guard.current)
            return

        ctx.suggestions = guests
        ctx.suggestions_loading = False
        logger.debug("Suggestions for prefix %s: %d match(es)", prefix, len(guests))
        await self._publish()

    def _is_current(self, ctx: SessionContext, tag: int) -> bool:
        return ctx is self._ctx and ctx.guard.is_current(tag)

    def _suggestions_visible(self, ctx: SessionContext) -> bool:
        return (
            ctx.gate is GatePhase.UNLOCKED
            and ctx.event is not None
            and len(ctx.query) >= self._door.suggestion_min_digits
            and not (ctx.guest is not None and ctx.guest.ci == ctx.query)
        )

    # ============================================================
    # LOOKUP & CHECK-IN
    # ============================================================

    async def submit_exact_search(self, ci: Optional[str] = None) -> Dict[str, Any]:
        ctx = self._ctx
        await self._require_unlocked(ctx, "search_message")
        await self._refuse_while_busy(ctx, "search_message")

        value = normalize_digits(ctx.query if ci is None else ci)
        if len(value) not in self._door.ci_lengths:
            lengths = " or ".join(str(n) for n in self._door.ci_lengths)
            await self._fail(ctx, "search_message", ValidationError(f"Invalid CI ({lengths} digits)"))

        self._supersede_prefix_lookups(ctx)
        previous = (ctx.lookup, ctx.guest, ctx.search_message, ctx.check_message)
        ctx.query = value
        ctx.lookup = LookupPhase.SEARCHING
        ctx.guest = None
        ctx.search_message = None
        ctx.check_message = None
        await self._publish()

        try:
            guest = await self._store.find_guest_by_exact_ci(ctx.event.id, value)
        except RemoteError as exc:
            if ctx is self._ctx:
                ctx.lookup, ctx.guest, ctx.search_message, ctx.check_message = previous
                await self._fail(ctx, "search_message", RemoteError("Error searching guest", log_message=str(exc)))
            raise

        if ctx is not self._ctx:
            return self.snapshot()

        if guest is None:
            logger.info("CI not on the list for event %s", ctx.event.event_code)
            logger.debug("Unmatched CI %s", value)
            ctx.lookup = LookupPhase.NOT_FOUND
            ctx.search_message = "Not on the list"
        else:
            ctx.lookup = LookupPhase.FOUND
            ctx.guest = guest
            ctx.suggestions = []
        await self._publish()
        return self.snapshot()

    async def pick_suggestion(self, guest_id: str) -> Dict[str, Any]:
        """Show a suggested guest directly; the suggestion already carries the full record."""
        ctx = self._ctx
        await self._require_unlocked(ctx, "search_message")
        await self._refuse_while_busy(ctx, "search_message")
        if not ctx.suggestions or not self._suggestions_visible(ctx):
            await self._fail(ctx, "search_message", ValidationError("No suggestions to pick from"))

        guest = next((g for g in ctx.suggestions if g.id == guest_id), None)
        if guest is None:
            await self._fail(ctx, "search_message", ValidationError("Unknown suggestion"))

        self._supersede_prefix_lookups(ctx)
        ctx.query = guest.ci
        ctx.lookup = LookupPhase.FOUND
        ctx.guest = guest
        ctx.search_message = None
        ctx.check_message = None
        await self._publish()
        return self.snapshot()

    async def check_in(self) -> Dict[str, Any]:
        """Record the displayed guest's entry; refused locally if it already happened."""
        ctx = self._ctx
        await self._require_unlocked(ctx, "check_message")

        if ctx.lookup is LookupPhase.CHECKING_IN:
            await self._fail(ctx, "check_message", AlreadyCheckedInError("Check-in already in progress"))
        if ctx.lookup is LookupPhase.CHECKED_IN:
            await self._fail(ctx, "check_message", AlreadyCheckedInError("Already checked in"))
        guest = ctx.guest
        if ctx.lookup is not LookupPhase.FOUND or guest is None:
            await self._fail(ctx, "check_message", ValidationError("No guest selected"))
        if guest.is_checked_in:
            await self._fail(ctx, "check_message", AlreadyCheckedInError("Already checked in"))

        ctx.lookup = LookupPhase.CHECKING_IN
        ctx.check_message = None
        query = ctx.query
        await self._publish()

        try:
            updated = await self._store.mark_checked_in(guest.id, self._clock())
            if updated.checked_in_at is None:
                raise RemoteError("Check-in not confirmed", log_message=f"guest {guest.id} came back without timestamp")
        except RemoteError as exc:
            if ctx is self._ctx and ctx.lookup is LookupPhase.CHECKING_IN:
                ctx.lookup = LookupPhase.FOUND
                ctx.guest = guest
                await self._fail(ctx, "check_message", RemoteError("Error recording check-in", log_message=str(exc)))
            raise

        if ctx is not self._ctx:
            logger.warning("Check-in for guest %s confirmed after the event was switched", guest.id)
            return self.snapshot()

        logger.info("Guest %s checked in at %s", updated.id, updated.checked_in_at.isoformat())
        ctx.lookup = LookupPhase.CHECKED_IN
        ctx.guest = updated
        ctx.check_message = "Check-in recorded"
        await self._publish()
        # no reset once typing for the next guest has started
        if ctx.query == query:
            self._reset_task = asyncio.create_task(self._reset_after_display(ctx), name="checked-in-reset")
        return self.snapshot()

    async def _reset_after_display(self, ctx: SessionContext) -> None:
        await asyncio.sleep(self._door.checked_in_display_seconds)
        if ctx is self._ctx and ctx.lookup is LookupPhase.CHECKED_IN:
            self._supersede_prefix_lookups(ctx)
            ctx.query = ""
            ctx.lookup = LookupPhase.IDLE
            ctx.guest = None
            ctx.search_message = None
            ctx.check_message = None
            await self._publish()
        self._reset_task = None

    # ============================================================
    # HELPERS
    # ============================================================

    def _supersede_prefix_lookups(self, ctx: SessionContext) -> None:
        self._debouncer.cancel()
        self._cancel_reset()
        ctx.guard.invalidate()
        ctx.suggestions = []
        ctx.suggestions_loading = False

    def _cancel_reset(self) -> None:
        task = self._reset_task
        self._reset_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _require_unlocked(self, ctx: SessionContext, message_field: str) -> None:
        if ctx.event is None or ctx.gate is not GatePhase.UNLOCKED:
            await self._fail(ctx, message_field, GateLockedError("Enter the PIN first"))

    async def _refuse_while_busy(self, ctx: SessionContext, message_field: str) -> None:
        if ctx.lookup is LookupPhase.SEARCHING:
            await self._fail(ctx, message_field, ValidationError("Search already in progress"))
        if ctx.lookup is LookupPhase.CHECKING_IN:
            await self._fail(ctx, message_field, ValidationError("Check-in in progress"))

    async def _fail(self, ctx: SessionContext, message_field: str, error: DoorError) -> None:
        """Record the error's message on screen, publish, then raise it."""
        setattr(ctx, message_field, error.user_message)
        logger.info("Refused: %s", error)
        await self._publish(error=error.user_message)
        raise error


__all__ = ["DoorSession", "SessionContext"]
