"""Cancellation and deadline carrier passed through every blocking call.

A :class:`Context` is handed to ``open_topic``, ``send`` and ``shutdown`` so
that providers can give up when the caller does. Contexts form a tree: a
child created with :meth:`Context.with_timeout` is done when its own deadline
passes or when its parent is done, whichever comes first.
"""

from __future__ import annotations

import threading
import time
import weakref
from typing import Optional


class Cancelled(Exception):
    """The context was cancelled before the operation completed."""


class DeadlineExceeded(Cancelled):
    """The context deadline passed before the operation completed."""


class Context:
    """Thread-safe cancellation signal with an optional deadline."""

    def __init__(
        self, timeout: Optional[float] = None, parent: Optional["Context"] = None
    ) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._err: Optional[Cancelled] = None
        # weak: children nobody holds any more drop out on their own
        self._children: weakref.WeakSet[Context] = weakref.WeakSet()
        self._parent = parent

        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + max(0.0, float(timeout))
        if parent is not None:
            parent_deadline = parent.deadline
            if parent_deadline is not None and (
                deadline is None or parent_deadline < deadline
            ):
                deadline = parent_deadline
        self._deadline = deadline

        if parent is not None:
            parent._adopt(self)

    @classmethod
    def background(cls) -> "Context":
        """Return a context that is never done unless cancelled explicitly."""
        return cls()

    @property
    def deadline(self) -> Optional[float]:
        """Monotonic deadline, or None when the context has no deadline."""
        return self._deadline

    def with_timeout(self, seconds: float) -> "Context":
        return Context(timeout=seconds, parent=self)

    def cancel(self) -> None:
        self._finish(Cancelled("context cancelled"))

    def err(self) -> Optional[Cancelled]:
        """Return the reason the context is done, or None while it is live."""
        if (
            self._err is None
            and self._deadline is not None
            and time.monotonic() >= self._deadline
        ):
            self._finish(DeadlineExceeded("context deadline exceeded"))
        return self._err

    def done(self) -> bool:
        return self.err() is not None

    def raise_if_done(self) -> None:
        err = self.err()
        if err is not None:
            raise type(err)(str(err))

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline; None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the context is done or *timeout* elapses.

        Returns True when the context is done.
        """
        limit = self.remaining()
        if timeout is not None:
            limit = timeout if limit is None else min(limit, timeout)
        self._event.wait(limit)
        return self.done()

    def _adopt(self, child: "Context") -> None:
        with self._lock:
            if self._err is None:
                self._children.add(child)
                return
            err = self._err
        child._finish(err)

    def _release(self, child: "Context") -> None:
        with self._lock:
            self._children.discard(child)

    def _finish(self, err: Cancelled) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            children = list(self._children)
            self._children.clear()
        self._event.set()
        for child in children:
            child._finish(err)
        if self._parent is not None:
            self._parent._release(self)


__all__ = ["Context", "Cancelled", "DeadlineExceeded"]
