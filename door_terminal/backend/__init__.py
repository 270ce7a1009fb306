"""Remote store access for the door terminal."""
from .http_client import RestGuestStore
from .store import GuestStore

__all__ = ["GuestStore", "RestGuestStore"]
