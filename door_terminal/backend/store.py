"""Guest store interface (repository pattern).

Stores must be swappable and return domain models. Transport and store
failures surface as ``RemoteError``; "no match" is ``None``, not an error.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..models import Event, Guest


class GuestStore(ABC):
    """Interface for the remote event/guest store."""

    @abstractmethod
    async def find_event_by_code(self, code: str) -> Optional[Event]:
        """Return the event with this door code, or None if not found."""
        ...

    @abstractmethod
    async def find_guests_by_prefix(self, event_id: str, prefix: str, limit: int) -> List[Guest]:
        """Return up to ``limit`` guests whose CI starts with ``prefix``, ordered by CI ascending."""
        ...

    @abstractmethod
    async def find_guest_by_exact_ci(self, event_id: str, ci: str) -> Optional[Guest]:
        """Return the guest with this exact CI, or None if not found."""
        ...

    @abstractmethod
    async def mark_checked_in(self, guest_id: str, timestamp: datetime) -> Guest:
        """Persist the check-in timestamp and return the stored record."""
        ...

    async def aclose(self) -> None:
        return None


__all__ = ["GuestStore"]
