"""PIN fingerprinting and digit normalization."""
from __future__ import annotations

import hashlib
import hmac
import re
import secrets
from typing import Optional

_NON_DIGITS = re.compile(r"[^0-9]")

# no 0/O or 1/I
EVENT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def normalize_digits(value: Optional[str]) -> str:
    """Strip every non-digit character. ``None`` becomes an empty string."""
    return _NON_DIGITS.sub("", value or "")


def fingerprint(plaintext: str) -> str:
    """One-way, deterministic fingerprint stored in place of a door PIN."""
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def matches_fingerprint(plaintext: str, stored: str) -> bool:
    return hmac.compare_digest(fingerprint(plaintext), stored or "")


def generate_event_code(length: int = 6) -> str:
    """Random short code used in the terminal address."""
    if length <= 0:
        raise ValueError("Event code length must be positive")
    return "".join(secrets.choice(EVENT_CODE_ALPHABET) for _ in range(length))


def door_path(event_code: str) -> str:
    return f"/door/{event_code}"


__all__ = [
    "EVENT_CODE_ALPHABET",
    "normalize_digits",
    "fingerprint",
    "matches_fingerprint",
    "generate_event_code",
    "door_path",
]
