"""Deadline and cancellation carried through every database call."""

import threading
import time
from typing import Optional

from .errors import ContextCancelled, DeadlineExceeded


class Context:
    """
    Caller supplied deadline plus a cancellation flag.

    Every statement checks the context before it is issued and bounds its own
    timeout by the time remaining.
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional['Context'] = None):
        self._cancelled = threading.Event()
        self._parent = parent
        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

    @classmethod
    def background(cls) -> 'Context':
        return cls()

    def with_timeout(self, timeout: float) -> 'Context':
        return Context(timeout=timeout, parent=self)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent.cancelled if self._parent is not None else False

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        """Raise if the context can no longer be used to issue work."""
        if self.cancelled:
            raise ContextCancelled("context canceled")
        if self.expired():
            raise DeadlineExceeded("context deadline exceeded")
