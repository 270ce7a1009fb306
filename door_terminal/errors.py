"""Terminal error taxonomy.

Every error is local to the terminal and recoverable by the operator
repeating the action. ``user_message`` is safe to show on the door screen.
"""
from __future__ import annotations

import enum
from typing import Optional


class ErrorCode(str, enum.Enum):
    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    GATE_LOCKED = "GATE_LOCKED"
    NOT_FOUND = "NOT_FOUND"
    REMOTE = "REMOTE"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"


class DoorError(RuntimeError):
    """Base class for recoverable terminal errors."""

    code: ErrorCode = ErrorCode.VALIDATION

    def __init__(self, user_message: str, *, log_message: Optional[str] = None) -> None:
        super().__init__(log_message or user_message)
        self.user_message = user_message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.args[0]}"


class ValidationError(DoorError):
    """Malformed PIN or CI; never reaches the remote store."""

    code = ErrorCode.VALIDATION


class AuthenticationError(DoorError):
    """PIN fingerprint mismatch."""

    code = ErrorCode.AUTHENTICATION


class GateLockedError(DoorError):
    """Guest actions attempted before the gate was unlocked."""

    code = ErrorCode.GATE_LOCKED


class NotFoundError(DoorError):
    """No event for the given door code."""

    code = ErrorCode.NOT_FOUND


class RemoteError(DoorError):
    """Transport or store failure."""

    code = ErrorCode.REMOTE


class AlreadyCheckedInError(DoorError):
    """Check-in refused locally; no remote call was made."""

    code = ErrorCode.ALREADY_CHECKED_IN


__all__ = [
    "ErrorCode",
    "DoorError",
    "ValidationError",
    "AuthenticationError",
    "GateLockedError",
    "NotFoundError",
    "RemoteError",
    "AlreadyCheckedInError",
]
