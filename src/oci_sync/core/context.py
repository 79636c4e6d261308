"""
Cancellation contexts for background sync work.

A SyncContext carries a cancellation signal and an optional deadline.
Children observe their parent's cancellation; cancelling a child leaves the
parent untouched. Every blocking wait in the sync engine goes through
``wait()`` or ``sleep()`` so shutdown is prompt.
"""

import threading
import time
from typing import Callable

from oci_sync.core.exceptions import CancellationError


class SyncContext:
    """
    Cancellation signal with optional deadline.

    Usage:
        root = SyncContext.background()
        with root.with_timeout(60) as ctx:
            ctx.sleep(1.0)       # raises CancellationError if ctx ends first
        root.cancel()            # stops everything derived from root
    """

    def __init__(
        self,
        parent: "SyncContext | None" = None,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize a context, optionally bound to a parent and a timeout."""
        self._parent = parent
        self._clock = parent._clock if parent is not None else clock
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: set[SyncContext] = set()
        self._reason: str | None = None

        deadline = self._clock() + timeout if timeout is not None else None
        if parent is not None and parent._deadline is not None:
            deadline = parent._deadline if deadline is None else min(deadline, parent._deadline)
        self._deadline = deadline

        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> "SyncContext":
        """Return a new root context that is never cancelled on its own."""
        return cls()

    def with_timeout(self, seconds: float) -> "SyncContext":
        """Derive a child that also ends after ``seconds``."""
        return type(self)(parent=self, timeout=seconds)

    def child(self) -> "SyncContext":
        """Derive a child that can be cancelled independently."""
        return type(self)(parent=self)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def now(self) -> float:
        return self._clock()

    def cancel(self, reason: str = CancellationError.CANCELLED) -> None:
        """Cancel this context and all of its children."""
        with self._lock:
            if self._reason is None:
                self._reason = reason
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for c in children:
            c.cancel(reason)
        if self._parent is not None:
            self._parent._detach(self)

    def done(self) -> bool:
        """True once the context was cancelled or its deadline passed."""
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel(CancellationError.DEADLINE_EXCEEDED)
            return True
        return False

    def err(self) -> CancellationError | None:
        """Return the cancellation reason, or None while the context is live."""
        if not self.done():
            return None
        return CancellationError(self._reason or CancellationError.CANCELLED)

    def raise_if_done(self) -> None:
        error = self.err()
        if error is not None:
            raise error

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until the context ends or ``timeout`` seconds pass.

        Returns:
            True if the context ended, False if the timeout elapsed first
        """
        if self.done():
            return True
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.done()

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds``, raising CancellationError if the context ends first."""
        if self.wait(seconds):
            raise self.err() or CancellationError()

    def __enter__(self) -> "SyncContext":
        return self

    def __exit__(self, *args) -> None:
        self.cancel()

    def _attach(self, child: "SyncContext") -> None:
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._children.add(child)
        if cancelled:
            child.cancel(self._reason or CancellationError.CANCELLED)

    def _detach(self, child: "SyncContext") -> None:
        with self._lock:
            self._children.discard(child)
