"""Error taxonomy for the publish path.

Each class names the stage that failed. Callers receive them chained to the
underlying provider exception so the original cause stays inspectable.
"""

from __future__ import annotations


class ChainsPubSubError(Exception):
    """Base class for errors raised to callers of the backend."""


class ConfigError(ChainsPubSubError):
    """Topic configuration is missing, malformed, or names an unknown provider."""


class ConnectError(ChainsPubSubError):
    """A handle to the resolved topic could not be opened."""


class PublishError(ChainsPubSubError):
    """Sending the message failed or the call was cancelled."""


class CleanupWarning(UserWarning):
    """Releasing a topic handle failed after the outcome was already decided.

    Only ever logged; it never replaces the result of a publish call.
    """


__all__ = [
    "ChainsPubSubError",
    "ConfigError",
    "ConnectError",
    "PublishError",
    "CleanupWarning",
]
