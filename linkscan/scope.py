"""Cooperative cancellation shared by the extraction and validation engines."""

from __future__ import annotations

import threading


class CancelScope:
    """A one-shot cancellation token.

    Every loop that performs side effects on behalf of a run checks
    ``cancelled`` before doing so; cancellation never interrupts work that is
    already executing.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or ``timeout`` elapses; return the cancelled state."""
        return self._event.wait(timeout)


__all__ = ["CancelScope"]
