"""Value types shared by the resolver, the bus layer and the backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True, slots=True)
class RunIdentity:
    """Identifies the task execution an attestation belongs to.

    Only used in log lines; routing never depends on it.
    """

    name: str
    namespace: str = ""
    kind: str = "TaskRun"
    uid: str = ""

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True, slots=True)
class StorageOpts:
    """Options accompanying a single payload; passed through untouched."""

    payload_format: str = ""
    full_key: str = ""
    short_key: str = ""
    cert: str = ""
    chain: str = ""


@dataclass(frozen=True, slots=True)
class TopicConfig:
    """Destination of published attestations.

    ``options`` holds provider-specific settings such as Kafka bootstrap
    servers or the MQTT broker address.
    """

    provider: str = ""
    topic: str = ""
    options: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = MappingProxyType({str(k): str(v) for k, v in self.options.items()})
        object.__setattr__(self, "options", frozen)


__all__ = ["RunIdentity", "StorageOpts", "TopicConfig"]
