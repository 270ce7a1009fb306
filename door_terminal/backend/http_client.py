"""PostgREST client for the hosted event/guest tables."""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from pydantic import TypeAdapter

from ..config import Settings
from ..errors import RemoteError
from ..models import Event, Guest
from .store import GuestStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIMESTAMP = TypeAdapter(Optional[datetime])

EVENT_COLUMNS = "id,name,event_date,event_code,door_pin_hash"
GUEST_COLUMNS = "id,event_id,first_name,last_name,ci,checked_in_at"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # PostgREST trims trailing zeros from fractional seconds
    return _TIMESTAMP.validate_python(value)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


def event_from_row(row: Dict[str, Any]) -> Event:
    return Event(
        id=str(row["id"]),
        name=row.get("name") or "",
        event_code=row["event_code"],
        pin_fingerprint=row.get("door_pin_hash") or "",
        event_date=_parse_date(row.get("event_date")),
    )


def guest_from_row(row: Dict[str, Any]) -> Guest:
    return Guest(
        id=str(row["id"]),
        event_id=str(row["event_id"]),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        ci=row["ci"],
        checked_in_at=_parse_timestamp(row.get("checked_in_at")),
    )


class RestGuestStore(GuestStore):
    """Thin wrapper around the PostgREST tables API."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=f"{self.settings.store_api_url}/rest/v1",
            timeout=self.settings.store_timeout_seconds,
            headers={
                "apikey": self.settings.store_api_key,
                "Authorization": f"Bearer {self.settings.store_api_key}",
                "Accept": "application/json",
            },
            transport=transport,
        )

    async def find_event_by_code(self, code: str) -> Optional[Event]:
        rows = await self._request(
            "find_event_by_code",
            "GET",
            "/events",
            params={"select": EVENT_COLUMNS, "event_code": f"eq.{code}", "limit": "1"},
        )
        return self._parse("find_event_by_code", event_from_row, rows[0]) if rows else None

    async def find_guests_by_prefix(self, event_id: str, prefix: str, limit: int) -> List[Guest]:
        rows = await self._request(
            "find_guests_by_prefix",
            "GET",
            "/guests",
            params={
                "select": GUEST_COLUMNS,
                "event_id": f"eq.{event_id}",
                "ci": f"like.{prefix}*",
                "order": "ci.asc",
                "limit": str(limit),
            },
        )
        return [self._parse("find_guests_by_prefix", guest_from_row, row) for row in rows]

    async def find_guest_by_exact_ci(self, event_id: str, ci: str) -> Optional[Guest]:
        # TODO: CI is not unique server-side; surface duplicates instead of taking the first row
        rows = await self._request(
            "find_guest_by_exact_ci",
            "GET",
            "/guests",
            params={"select": GUEST_COLUMNS, "event_id": f"eq.{event_id}", "ci": f"eq.{ci}", "limit": "1"},
        )
        return self._parse("find_guest_by_exact_ci", guest_from_row, rows[0]) if rows else None

    async def mark_checked_in(self, guest_id: str, timestamp: datetime) -> Guest:
        rows = await self._request(
            "mark_checked_in",
            "PATCH",
            "/guests",
            params={"id": f"eq.{guest_id}", "select": GUEST_COLUMNS},
            json={"checked_in_at": timestamp.isoformat()},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            logger.error("store.mark_checked_in: no row returned for guest %s", guest_id)
            raise RemoteError("Error recording check-in", log_message=f"guest {guest_id} not updated")
        return self._parse("mark_checked_in", guest_from_row, rows[0])

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> List[Dict[str, Any]]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            return data
        except httpx.TimeoutException as e:
            logger.error("store.%s: request timeout", operation)
            raise RemoteError("The store did not answer in time", log_message=f"{operation}: timeout") from e
        except httpx.NetworkError as e:
            logger.error("store.%s: network error - %s", operation, e)
            raise RemoteError("Cannot reach the store", log_message=f"{operation}: {e}") from e
        except httpx.TransportError as e:
            logger.error("store.%s: transport error - %s", operation, e)
            raise RemoteError("Cannot reach the store", log_message=f"{operation}: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.error("store.%s: HTTP %d - %s", operation, e.response.status_code, e.response.text)
            raise RemoteError(
                "The store rejected the request",
                log_message=f"{operation}: HTTP {e.response.status_code}",
            ) from e
        except ValueError as e:
            logger.error("store.%s: malformed response - %s", operation, e)
            raise RemoteError("Unexpected store response", log_message=f"{operation}: {e}") from e

    @staticmethod
    def _parse(operation: str, convert: Callable[[Dict[str, Any]], T], row: Dict[str, Any]) -> T:
        try:
            return convert(row)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("store.%s: unreadable row - %r", operation, e)
            raise RemoteError("Unexpected store response", log_message=f"{operation}: {e!r}") from e

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing store HTTP client: %s", e)


__all__ = ["RestGuestStore", "event_from_row", "guest_from_row", "EVENT_COLUMNS", "GUEST_COLUMNS"]
