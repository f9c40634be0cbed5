"""
Cooperative cancellation for blocking work.

A CancellationToken is handed down from a driver (scheduled sweep, reactive
handler, HTTP request) to everything that may block: rate-limit waits and
outbound requests. It combines an explicit cancel flag with an optional
deadline, so "give up after 30 seconds" and "the service is shutting down"
look the same to callees.
"""

import threading
import time
from typing import Optional


class OperationCancelled(Exception):
    """Raised when work is abandoned because its token was cancelled or timed out."""


class CancellationToken:
    """
    Thread-safe cancel flag with an optional deadline.

    Usage:
        token = CancellationToken(timeout=30)
        token.wait(0.25)          # sleeps, raises OperationCancelled if cancelled
        token.raise_if_cancelled()
    """

    def __init__(self, timeout: Optional[float] = None, parent: "CancellationToken" = None):
        """
        Args:
            timeout: Seconds until the token cancels itself, or None for no deadline
            parent: Token whose cancellation also cancels this one
        """
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._parent is not None and self._parent.cancelled:
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (own or inherited), None if unbounded."""
        candidates = []
        if self._deadline is not None:
            candidates.append(max(0.0, self._deadline - time.monotonic()))
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                candidates.append(parent_remaining)
        return min(candidates) if candidates else None

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled("operation cancelled")

    def wait(self, seconds: float) -> None:
        """
        Sleep for `seconds`, waking early and raising if cancelled.

        Polls in 0.1s increments to notice parent tokens and deadlines.
        """
        end = time.monotonic() + seconds
        while True:
            self.raise_if_cancelled()
            left = end - time.monotonic()
            if left <= 0:
                return
            self._event.wait(min(left, 0.1))


def sleep(seconds: float, cancel: Optional[CancellationToken] = None) -> None:
    """Sleep that honours an optional cancellation token."""
    if seconds <= 0:
        if cancel is not None:
            cancel.raise_if_cancelled()
        return
    if cancel is None:
        time.sleep(seconds)
    else:
        cancel.wait(seconds)
