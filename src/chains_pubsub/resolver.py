"""Map a topic configuration to the URI understood by the bus layer.

URIs take the form ``<scheme>://<topic>[?option=value&...]``. Provider
options are encoded as a query string sorted by key, so the same
configuration always yields the same URI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit

from .errors import ConfigError, ConnectError
from .types import TopicConfig


@dataclass(frozen=True)
class ProviderSpec:
    scheme: str
    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()


PROVIDERS: dict[str, ProviderSpec] = {
    "inmemory": ProviderSpec(scheme="mem"),
    "kafka": ProviderSpec(
        scheme="kafka",
        required=("bootstrap_servers",),
        optional=("client_id", "acks"),
    ),
    "mqtt": ProviderSpec(
        scheme="mqtt",
        optional=("host", "port", "qos", "client_id"),
    ),
}
PROVIDERS["mem"] = PROVIDERS["inmemory"]


def resolve(cfg: TopicConfig) -> str:
    """Return the topic URI for *cfg*; raise ConfigError if it is unusable."""
    provider = (cfg.provider or "").strip().lower()
    topic = (cfg.topic or "").strip()
    if not provider:
        raise ConfigError("pubsub provider must not be empty")
    if not topic:
        raise ConfigError("pubsub topic must not be empty")

    entry = PROVIDERS.get(provider)
    if entry is None:
        known = ", ".join(sorted(PROVIDERS))
        raise ConfigError(f"unsupported pubsub provider {cfg.provider!r} (known: {known})")

    options = {key: value.strip() for key, value in cfg.options.items()}
    unknown = sorted(set(options) - set(entry.required) - set(entry.optional))
    if unknown:
        raise ConfigError(
            f"unknown option(s) for provider {provider!r}: {', '.join(unknown)}"
        )
    missing = [key for key in entry.required if not options.get(key)]
    if missing:
        raise ConfigError(
            f"provider {provider!r} requires option(s): {', '.join(missing)}"
        )
    if entry.scheme == "mqtt":
        _check_mqtt_options(options)

    uri = f"{entry.scheme}://{quote(topic, safe='/')}"
    query = urlencode(sorted((key, value) for key, value in options.items() if value))
    return f"{uri}?{query}" if query else uri


def parse_topic_uri(uri: str) -> tuple[str, str, dict[str, str]]:
    """Split a topic URI into ``(scheme, topic, options)``.

    The topic is the URI's netloc and path joined, so topic names that
    contain ``/`` (common on MQTT) round-trip unchanged.
    """
    parts = urlsplit(uri)
    if not parts.scheme:
        raise ConnectError(f"topic URI {uri!r} has no scheme")
    topic = unquote(parts.netloc + parts.path)
    if not topic:
        raise ConnectError(f"topic URI {uri!r} names no topic")
    return parts.scheme.lower(), topic, dict(parse_qsl(parts.query))


def _check_mqtt_options(options: Mapping[str, str]) -> None:
    port = options.get("port")
    if port:
        if not port.isdigit() or not 0 < int(port) < 65536:
            raise ConfigError(f"mqtt port must be 1-65535, got {port!r}")
    qos = options.get("qos")
    if qos and qos not in {"0", "1", "2"}:
        raise ConfigError(f"mqtt qos must be 0, 1 or 2, got {qos!r}")


__all__ = ["PROVIDERS", "ProviderSpec", "resolve", "parse_topic_uri"]
