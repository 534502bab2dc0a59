"""
Cancellation and deadlines for long-running operations
"""

import threading
import time
from typing import Optional

from exceptions import DeadlineExceededError, OperationCancelledError


class CancellationToken:
    """
    Shared cancel flag with an optional per-phase deadline

    Tokens derived with with_timeout() share the cancel flag of their parent,
    so cancelling the root token stops every phase.
    """

    def __init__(self, event: Optional[threading.Event] = None, deadline: Optional[float] = None):
        self._event = event or threading.Event()
        self._deadline = deadline

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def with_timeout(self, seconds: Optional[float]) -> 'CancellationToken':
        """Derive a token expiring after `seconds`; 0 or None means no deadline"""
        if not seconds:
            return CancellationToken(self._event, self._deadline)
        deadline = time.monotonic() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        return CancellationToken(self._event, deadline)

    def raise_if_cancelled(self, operation: str) -> None:
        """
        Raises:
            OperationCancelledError: If cancel() was called
            DeadlineExceededError: If the deadline passed
        """
        if self.cancelled:
            raise OperationCancelledError(f"{operation} cancelled")
        if self.expired:
            raise DeadlineExceededError(f"{operation} exceeded its deadline")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`, waking early on cancel; returns True if cancelled"""
        return self._event.wait(seconds)
