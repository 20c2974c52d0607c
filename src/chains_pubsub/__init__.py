"""Publish signed supply-chain attestations onto a message bus.

Expose a runtime version value (``__version__``) alongside the public API.
"""

from importlib import metadata as _importlib_metadata

try:
    __version__ = _importlib_metadata.version("chains-pubsub")
except _importlib_metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    __version__ = "0.0.0"

from chains_pubsub.backend import STORAGE_BACKEND_PUBSUB, PubSubBackend  # noqa: E402
from chains_pubsub.config import PubSubConfig, load_config  # noqa: E402
from chains_pubsub.context import Cancelled, Context, DeadlineExceeded  # noqa: E402
from chains_pubsub.errors import (  # noqa: E402
    ChainsPubSubError,
    CleanupWarning,
    ConfigError,
    ConnectError,
    PublishError,
)
from chains_pubsub.resolver import resolve  # noqa: E402
from chains_pubsub.types import RunIdentity, StorageOpts, TopicConfig  # noqa: E402

__all__ = [
    "__version__",
    "PubSubBackend",
    "STORAGE_BACKEND_PUBSUB",
    "PubSubConfig",
    "load_config",
    "Context",
    "Cancelled",
    "DeadlineExceeded",
    "ChainsPubSubError",
    "CleanupWarning",
    "ConfigError",
    "ConnectError",
    "PublishError",
    "resolve",
    "RunIdentity",
    "StorageOpts",
    "TopicConfig",
]
