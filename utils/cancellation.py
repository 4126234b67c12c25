"""Cooperative cancellation handle shared across a batch run."""

from __future__ import annotations

from typing import Optional


class CancellationToken:
    """A flag that long-running work polls at its suspension points.

    Cancelling never interrupts an in-flight remote call; callers check
    `cancelled` before dispatching work and again after joining on it.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation. Repeated calls keep the first reason."""
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled!r}, reason={self.reason!r})"
