"""URI scheme dispatch for topic providers."""

from __future__ import annotations

import logging
import threading

from ..context import Context
from ..errors import ConnectError
from ..resolver import parse_topic_uri
from .base import TopicHandle, TopicOpener

LOG = logging.getLogger(__name__)

_lock = threading.Lock()
_openers: dict[str, TopicOpener] = {}


def register_scheme(scheme: str, opener: TopicOpener) -> None:
    """Register *opener* for URIs with *scheme*, replacing any previous one."""
    with _lock:
        _openers[scheme.lower()] = opener


def registered_schemes() -> list[str]:
    with _lock:
        return sorted(_openers)


def open_topic(ctx: Context, uri: str) -> TopicHandle:
    """Open a handle to the topic addressed by *uri*.

    Raises ``Cancelled`` if *ctx* is already done and ConnectError when no
    provider handles the scheme.
    """
    ctx.raise_if_done()
    scheme, topic, options = parse_topic_uri(uri)
    with _lock:
        opener = _openers.get(scheme)
    if opener is None:
        raise ConnectError(f"no provider registered for scheme {scheme!r} ({uri})")
    LOG.debug("Opening %s topic %s", scheme, topic)
    return opener(ctx, topic, options)


def _register_defaults() -> None:
    from . import kafka, memory, mqtt

    register_scheme("mem", memory.open_topic)
    register_scheme("mqtt", mqtt.open_topic)
    register_scheme("kafka", kafka.open_topic)


_register_defaults()


__all__ = ["register_scheme", "registered_schemes", "open_topic"]
