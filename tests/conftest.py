"""Shared fixtures."""

from __future__ import annotations

import os

import pytest

from chains_pubsub.bus import memory


@pytest.fixture(autouse=True)
def _fresh_memory_broker():
    """Each test starts with no in-process topics."""
    memory.reset()
    yield
    memory.reset()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep the developer's config and CHAINS_PUBSUB_* variables out of tests."""
    for key in list(os.environ):
        if key.startswith("CHAINS_PUBSUB_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
