"""Sequence tags that keep out-of-order prefix responses off the screen."""
from __future__ import annotations


class StaleResultGuard:
    """Monotonic counter; only the response tagged with the latest value may land.

    In-flight requests are never cancelled. Their responses simply fail
    ``is_current`` once a newer tag has been issued or the guard invalidated.
    """

    def __init__(self) -> None:
        self._counter = 0

    @property
    def current(self) -> int:
        return self._counter

    def issue(self) -> int:
        self._counter += 1
        return self._counter

    def invalidate(self) -> None:
        self._counter += 1

    def is_current(self, tag: int) -> bool:
        return tag == self._counter


__all__ = ["StaleResultGuard"]
