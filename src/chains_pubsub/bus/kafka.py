"""Kafka topic provider (``kafka://``) wrapping confluent-kafka's Producer.

confluent-kafka is an optional dependency (the ``kafka`` extra); the module
raises ImportError when a handle is constructed without it.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional

from ..context import Context
from .base import Message

try:
    from confluent_kafka import Producer  # type: ignore[import]
except ImportError:  # pragma: no cover - optional dependency
    Producer = None  # type: ignore[assignment,misc]

LOG = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_DEFAULT_FLUSH_TIMEOUT = 15.0


class KafkaTopic:
    """Backpressure-safe, one-message-at-a-time Kafka producer handle."""

    def __init__(
        self,
        topic: str,
        bootstrap_servers: str,
        client_id: str = "",
        acks: str = "all",
    ) -> None:
        if Producer is None:
            raise ImportError("confluent-kafka is required for kafka:// topics")
        conf: dict[str, Any] = {
            "bootstrap.servers": bootstrap_servers,
            "acks": acks or "all",
        }
        if client_id:
            conf["client.id"] = client_id
        self._topic = topic
        self._producer = Producer(conf)
        self._closed = False

    def send(self, ctx: Context, message: Message) -> None:
        if self._closed:
            raise RuntimeError(f"kafka topic {self._topic!r} has been shut down")

        delivered = threading.Event()
        outcome: dict[str, Any] = {}

        def _on_delivery(err: Any, _msg: Any) -> None:
            outcome["err"] = err
            delivered.set()

        while True:
            ctx.raise_if_done()
            try:
                self._producer.produce(
                    topic=self._topic,
                    value=message.body,
                    headers=list(message.metadata.items()),
                    on_delivery=_on_delivery,
                )
                break
            except BufferError:
                self._producer.poll(_poll_timeout(ctx))

        while not delivered.is_set():
            ctx.raise_if_done()
            self._producer.poll(_poll_timeout(ctx))

        err = outcome.get("err")
        if err is not None:
            raise RuntimeError(f"kafka delivery to {self._topic!r} failed: {err}")
        LOG.debug("Delivered %d bytes to %s", len(message.body), self._topic)

    def shutdown(self, ctx: Context) -> None:
        if self._closed:
            raise RuntimeError(f"kafka topic {self._topic!r} already shut down")
        self._closed = True
        timeout = ctx.remaining()
        left = self._producer.flush(_DEFAULT_FLUSH_TIMEOUT if timeout is None else timeout)
        if left:
            raise RuntimeError(f"{left} message(s) still queued for {self._topic!r} at shutdown")


def _poll_timeout(ctx: Context) -> float:
    remaining: Optional[float] = ctx.remaining()
    if remaining is None:
        return _POLL_INTERVAL
    return min(_POLL_INTERVAL, remaining)


def open_topic(ctx: Context, topic: str, options: Mapping[str, str]) -> KafkaTopic:
    ctx.raise_if_done()
    servers = options.get("bootstrap_servers", "")
    if not servers:
        raise ValueError("kafka topics require bootstrap_servers")
    LOG.debug("Creating Kafka producer for %s via %s", topic, servers)
    return KafkaTopic(
        topic,
        bootstrap_servers=servers,
        client_id=options.get("client_id", ""),
        acks=options.get("acks", "all"),
    )


__all__ = ["KafkaTopic", "open_topic"]
