"""In-process topic provider (``mem://``).

Topics live in a process-wide broker. Opening a topic creates it; a
subscription must be opened on an existing topic and only sees messages sent
after it was opened. Messages sent while a topic has no subscriptions are
dropped, as on a real broker.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from types import MappingProxyType
from typing import Mapping

from ..context import Context
from ..errors import ConnectError
from ..resolver import parse_topic_uri
from .base import Message

LOG = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


class ReceivedMessage:
    def __init__(self, body: bytes, metadata: Mapping[str, str]) -> None:
        self.body = body
        self.metadata = metadata
        self.acked = False

    def ack(self) -> None:
        self.acked = True


class _TopicState:
    def __init__(self, name: str) -> None:
        self.name = name
        self.lock = threading.Lock()
        self.subscriptions: list[MemSubscription] = []

    def deliver(self, message: Message) -> int:
        with self.lock:
            targets = list(self.subscriptions)
        for sub in targets:
            sub._push(message)
        return len(targets)


_broker_lock = threading.Lock()
_topics: dict[str, _TopicState] = {}


def _get_or_create(name: str) -> _TopicState:
    with _broker_lock:
        state = _topics.get(name)
        if state is None:
            state = _TopicState(name)
            _topics[name] = state
        return state


class MemTopic:
    """Handle to an in-process topic."""

    def __init__(self, state: _TopicState) -> None:
        self._state = state
        self._closed = False

    @property
    def name(self) -> str:
        return self._state.name

    def send(self, ctx: Context, message: Message) -> None:
        ctx.raise_if_done()
        if self._closed:
            raise RuntimeError(f"mem topic {self.name!r} has been shut down")
        body = bytes(message.body)
        metadata = MappingProxyType(dict(message.metadata))
        delivered = self._state.deliver(Message(body=body, metadata=metadata))
        LOG.debug("mem topic %s delivered to %d subscription(s)", self.name, delivered)

    def shutdown(self, ctx: Context) -> None:
        if self._closed:
            raise RuntimeError(f"mem topic {self.name!r} already shut down")
        self._closed = True


class MemSubscription:
    """Receives messages sent to an in-process topic."""

    def __init__(self, state: _TopicState) -> None:
        self._state = state
        self._cond = threading.Condition()
        self._queue: deque[Message] = deque()
        self._closed = False

    def _push(self, message: Message) -> None:
        with self._cond:
            if self._closed:
                return
            self._queue.append(message)
            self._cond.notify_all()

    def pending(self) -> int:
        with self._cond:
            return len(self._queue)

    def receive(self, ctx: Context) -> ReceivedMessage:
        """Block until a message arrives; raise ``Cancelled`` when *ctx* is done."""
        while True:
            with self._cond:
                if self._queue:
                    message = self._queue.popleft()
                    return ReceivedMessage(message.body, message.metadata)
                if self._closed:
                    raise RuntimeError(
                        f"mem subscription on {self._state.name!r} has been shut down"
                    )
                ctx.raise_if_done()
                wait_for = _POLL_INTERVAL
                remaining = ctx.remaining()
                if remaining is not None:
                    wait_for = min(wait_for, remaining)
                self._cond.wait(wait_for)

    def shutdown(self, ctx: Context) -> None:
        with self._state.lock:
            if self in self._state.subscriptions:
                self._state.subscriptions.remove(self)
        with self._cond:
            self._closed = True
            self._queue.clear()
            self._cond.notify_all()


def open_topic(ctx: Context, topic: str, options: Mapping[str, str]) -> MemTopic:
    ctx.raise_if_done()
    if options:
        raise ConnectError(f"mem topics take no options, got {sorted(options)}")
    return MemTopic(_get_or_create(topic))


def open_subscription(ctx: Context, uri: str) -> MemSubscription:
    """Subscribe to the existing in-process topic addressed by *uri*."""
    ctx.raise_if_done()
    scheme, topic, _options = parse_topic_uri(uri)
    if scheme != "mem":
        raise ConnectError(f"not an in-process topic URI: {uri!r}")
    with _broker_lock:
        state = _topics.get(topic)
    if state is None:
        raise ConnectError(f"mem topic {topic!r} does not exist")
    sub = MemSubscription(state)
    with state.lock:
        state.subscriptions.append(sub)
    return sub


def reset() -> None:
    """Forget every in-process topic (subscriptions stop receiving)."""
    with _broker_lock:
        _topics.clear()


__all__ = [
    "MemTopic",
    "MemSubscription",
    "ReceivedMessage",
    "open_topic",
    "open_subscription",
    "reset",
]
