"""Message-bus abstraction used by the publisher backend.

Provide a minimal interface that the backend can depend on. Provider
implementations live alongside this file (eg. ``mqtt.py``) and are selected
by URI scheme through :mod:`chains_pubsub.bus.registry`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol

from ..context import Context


@dataclass(frozen=True)
class Message:
    """A unit sent to the bus: a byte body plus string metadata."""

    body: bytes
    metadata: Mapping[str, str] = field(default_factory=dict)


class TopicHandle(Protocol):
    """An open connection to a single topic.

    Implementations must block in ``send`` until the provider has accepted
    the message or failed, and should give up once *ctx* is done.
    """

    def send(self, ctx: Context, message: Message) -> None:  # pragma: no cover - interface
        ...

    def shutdown(self, ctx: Context) -> None:  # pragma: no cover - interface
        ...


class TopicOpener(Protocol):
    def __call__(
        self, ctx: Context, topic: str, options: Mapping[str, str]
    ) -> TopicHandle:  # pragma: no cover - interface
        ...


__all__ = ["Message", "TopicHandle", "TopicOpener"]
