"""Cooperative cancellation and deadlines for workers, handlers and plugins.

A :class:`RunContext` carries an optional absolute deadline (monotonic clock)
and a cancel flag. Children inherit the earlier of their own and their
parent's deadline, and are cancelled when the parent is. Nothing is
interrupted forcibly: long-running code calls :meth:`RunContext.check`
between units of work, sleeps through :meth:`RunContext.sleep`, and caps
blocking I/O with :meth:`RunContext.timeout_for`.

    with root.with_timeout(30 * 60) as job_ctx:
        handler.handle(job_ctx, job)
"""
from __future__ import annotations

import threading
import time
from typing import Optional

from catalog.errors import Cancelled, DeadlineExceeded

# Lower bound handed to blocking calls so a nearly-expired deadline still
# produces a real timeout instead of 0 (which requests treats as "no wait").
MIN_IO_TIMEOUT = 0.05


class RunContext:
    def __init__(self, deadline: Optional[float] = None, parent: Optional["RunContext"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: set[RunContext] = set()
        self.parent = parent
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> "RunContext":
        return cls()

    # --- derivation ---------------------------------------------------------

    def with_timeout(self, seconds: float) -> "RunContext":
        return RunContext(deadline=time.monotonic() + seconds, parent=self)

    def with_cancel(self) -> "RunContext":
        return RunContext(parent=self)

    def _attach(self, child: "RunContext") -> None:
        with self._lock:
            if self._event.is_set():
                child.cancel()
                return
            self._children.add(child)

    def _detach(self, child: "RunContext") -> None:
        with self._lock:
            self._children.discard(child)

    def release(self) -> None:
        """Cancel this context and drop it from its parent."""
        self.cancel()
        if self.parent is not None:
            self.parent._detach(self)

    def __enter__(self) -> "RunContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    # --- state --------------------------------------------------------------

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def has_deadline(self) -> bool:
        return self.deadline is not None

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    @property
    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0

    def done(self) -> bool:
        return self.cancelled or self.expired

    def check(self) -> None:
        """Raise if the context was cancelled or its deadline has passed."""
        if self.cancelled:
            raise Cancelled("context cancelled")
        if self.expired:
            raise DeadlineExceeded("context deadline exceeded")

    # --- waiting ------------------------------------------------------------

    def wait(self, seconds: float) -> bool:
        """Block up to `seconds` (bounded by the deadline). True once done."""
        left = self.remaining()
        if left is not None:
            seconds = min(seconds, max(left, 0.0))
        self._event.wait(seconds)
        return self.done()

    def sleep(self, seconds: float) -> None:
        """Like time.sleep, but wakes and raises on cancellation or deadline."""
        if seconds > 0:
            self.wait(seconds)
        self.check()

    def timeout_for(self, default: float) -> float:
        """Per-call I/O timeout: `default`, capped by the remaining budget."""
        self.check()
        left = self.remaining()
        if left is None:
            return default
        return max(min(default, left), MIN_IO_TIMEOUT)


__all__ = ["RunContext", "MIN_IO_TIMEOUT"]
