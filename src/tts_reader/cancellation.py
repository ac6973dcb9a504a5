"""Cooperative cancellation for speak calls.

Each ``speak`` captures the current token.  Starting another ``speak``
or stopping playback bumps the token, and every in-flight call notices
at its next checkpoint that it has been superseded.
"""

from __future__ import annotations

import threading


class CancelScope:
    """The token value seen by one speak call."""

    __slots__ = ("_controller", "token")

    def __init__(self, controller: "CancellationController", token: int):
        self._controller = controller
        self.token = token

    @property
    def cancelled(self) -> bool:
        return self._controller.current != self.token


class CancellationController:
    """Monotonically increasing token shared by every speak call."""

    def __init__(self) -> None:
        self._token = 0
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        return self._token

    def bump(self) -> int:
        """Invalidate every scope captured so far. Returns the new token."""
        with self._lock:
            self._token += 1
            return self._token

    def capture(self) -> CancelScope:
        return CancelScope(self, self._token)
