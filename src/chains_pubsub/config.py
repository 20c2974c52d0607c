"""Configuration loading for the pubsub storage backend.

Sources are layered, later ones overriding earlier ones:

1. the TOML config file (if present)
2. environment variables (``CHAINS_PUBSUB_*`` prefix)
3. explicit overrides passed by the host process

The relevant table is ``[storage.pubsub]``; the sub-table named after the
selected provider (eg. ``[storage.pubsub.kafka]``) supplies provider options.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError
from .types import TopicConfig

CONFIG_ENV_VAR = "CHAINS_PUBSUB_CONFIG"
LOG_LEVEL_ENV_VAR = "CHAINS_PUBSUB_LOG_LEVEL"
CONFIG_DIR_NAME = "chains-pubsub"
CONFIG_FILENAME = "config.toml"
ENV_PREFIX = "CHAINS_PUBSUB_"

_RESERVED_ENV = {CONFIG_ENV_VAR, LOG_LEVEL_ENV_VAR}


def get_config_dir() -> Path:
    """Return the directory containing configuration files."""
    value = os.environ.get("XDG_CONFIG_HOME")
    base = Path(value).expanduser() if value else Path.home() / ".config"
    return base / CONFIG_DIR_NAME


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Resolve the configuration file path, honouring overrides."""
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return get_config_dir() / CONFIG_FILENAME


@dataclass(frozen=True, slots=True)
class PubSubConfig:
    """Resolved settings for one backend instance."""

    topic: TopicConfig = field(default_factory=TopicConfig)
    message_body: str = "signature"
    shutdown_timeout: float = 5.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PubSubConfig:
        """Construct from a dictionary (typically parsed from TOML)."""
        storage = data.get("storage", {})
        if not isinstance(storage, Mapping):
            raise ConfigError("[storage] must be a table")
        pubsub = storage.get("pubsub", {})
        if not isinstance(pubsub, Mapping):
            raise ConfigError("[storage.pubsub] must be a table")

        provider = str(pubsub.get("provider", "") or "")
        table = pubsub.get(provider.strip().lower(), {}) if provider else {}
        if not isinstance(table, Mapping):
            raise ConfigError(f"[storage.pubsub.{provider}] must be a table")

        return cls(
            topic=TopicConfig(
                provider=provider,
                topic=str(pubsub.get("topic", "") or ""),
                options=_stringify_options(provider, table),
            ),
            message_body=str(pubsub.get("message_body", "signature")),
            shutdown_timeout=_positive_float(
                pubsub.get("shutdown_timeout", 5.0), "shutdown_timeout"
            ),
        )


def load_layered_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Load and merge the config file, environment and explicit overrides.

    A missing file is only an error when *path* was given explicitly.
    """
    config_path = resolve_config_path(path)
    result: dict[str, Any] = {}
    if config_path.exists():
        result = _load_toml_file(config_path)
    elif path is not None:
        raise ConfigError(f"config file {config_path} does not exist")

    env_overrides = _extract_env_overrides()
    if env_overrides:
        result = _deep_merge(result, env_overrides)
    if overrides:
        result = _deep_merge(result, dict(overrides))
    return result


def load_config(
    path: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> PubSubConfig:
    """Load the backend configuration from all layers."""
    return PubSubConfig.from_dict(load_layered_config(path, overrides))


def _load_toml_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base, preferring override values."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _extract_env_overrides() -> dict[str, Any]:
    """Extract CHAINS_PUBSUB_* environment variables into a nested dict.

    ``CHAINS_PUBSUB_STORAGE__PUBSUB__TOPIC=x`` becomes
    ``{"storage": {"pubsub": {"topic": "x"}}}``.
    """
    overrides: dict[str, Any] = {}
    for env_key, env_value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX) or env_key in _RESERVED_ENV:
            continue
        suffix = env_key[len(ENV_PREFIX) :]
        parts = [part for part in suffix.lower().split("__") if part]
        if not parts:
            continue
        node = overrides
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = _parse_env_value(env_value)
    return overrides


def _parse_env_value(raw: str) -> Any:
    """Parse an environment string into bool, int, float or str."""
    lower = raw.lower()
    if lower == "true":
        return True
    if lower == "false":
        return False
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        pass
    return raw


def _stringify_options(provider: str, table: Mapping[str, Any]) -> dict[str, str]:
    options: dict[str, str] = {}
    for key, value in table.items():
        if isinstance(value, (dict, list)):
            raise ConfigError(f"option {provider}.{key} must be a scalar")
        if isinstance(value, bool):
            options[str(key)] = "true" if value else "false"
        else:
            options[str(key)] = str(value)
    return options


def _positive_float(value: Any, name: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if result <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return result


__all__ = [
    "PubSubConfig",
    "load_config",
    "load_layered_config",
    "resolve_config_path",
    "get_config_dir",
    "CONFIG_ENV_VAR",
    "LOG_LEVEL_ENV_VAR",
    "CONFIG_DIR_NAME",
    "CONFIG_FILENAME",
    "ENV_PREFIX",
]
