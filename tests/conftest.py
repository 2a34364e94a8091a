"""Global test fixtures for reviewdeck."""

from __future__ import annotations

import pytest

from reviewdeck.config import Config, set_config


@pytest.fixture(autouse=True)
def _default_config():
    """Reset config to defaults before every test.

    A developer's own .reviewdeck.toml or RD_* variables must not leak into
    tests that inspect the active config.
    """
    set_config(Config())
    yield
    set_config(Config())


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep real tokens and repository overrides out of every test."""
    for var in ("GH_TOKEN", "GITHUB_TOKEN", "RD_OWNER", "RD_REPO"):
        monkeypatch.delenv(var, raising=False)
