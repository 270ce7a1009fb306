"""Domain records loaded from the remote store.

The terminal never mutates these in place; a check-in yields a new Guest
built from the server response.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Event:
    """An event as seen by the door. Carries the PIN fingerprint, never the PIN."""

    id: str
    name: str
    event_code: str
    pin_fingerprint: str
    event_date: Optional[date] = None

    def public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "event_code": self.event_code,
            "event_date": self.event_date.isoformat() if self.event_date else None,
        }


@dataclass(frozen=True)
class Guest:
    """A guest-list entry scoped to one event."""

    id: str
    event_id: str
    first_name: str
    last_name: str
    ci: str
    checked_in_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_checked_in(self) -> bool:
        return self.checked_in_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "ci": self.ci,
            "checked_in_at": self.checked_in_at.isoformat() if self.checked_in_at else None,
        }


__all__ = ["Event", "Guest"]
