"""Shared terminal state definitions for the door kiosk."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class GatePhase(str, enum.Enum):
    """
    Gate phases:

    1. LOCKED    - Event loaded, waiting for the door PIN
    2. UNLOCKED  - PIN accepted, guest search available until another event is loaded
    """
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class LookupPhase(str, enum.Enum):
    """
    Guest lookup phases:

    1. IDLE         - Waiting for a CI
    2. SEARCHING    - Exact CI query in flight
    3. FOUND        - Guest on screen, check-in available
    4. NOT_FOUND    - CI is not on the list
    5. CHECKING_IN  - Check-in mutation in flight
    6. CHECKED_IN   - Confirmed check-in shown (2s) → IDLE
    """
    IDLE = "idle"
    SEARCHING = "searching"
    FOUND = "found"
    NOT_FOUND = "not_found"
    CHECKING_IN = "checking_in"
    CHECKED_IN = "checked_in"


@dataclass
class TerminalEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    gate: GatePhase
    lookup: LookupPhase
    error: Optional[str] = None


__all__ = ["GatePhase", "LookupPhase", "TerminalEvent"]
