"""
Global test configuration and shared fixtures.
"""

from collections.abc import Callable
import os
from typing import Any

import pytest

from enrich_batch.config import FrozenConfig, resolve_config


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_enrich_env(request, monkeypatch, tmp_path):
    """Ensure a clean ENRICH_* environment for each test.

    Also runs each test from an empty directory so no stray pyproject.toml
    contributes configuration.

    Escape hatch: @pytest.mark.allow_env_pollution keeps the environment.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ):
        if key.startswith("ENRICH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DEBUG", raising=False)
    monkeypatch.chdir(tmp_path)


def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "integration: Component integration tests with fake clients",
        "allow_env_pollution: Keep ENRICH_* environment variables",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


@pytest.fixture
def config_factory() -> Callable[..., FrozenConfig]:
    def _make(**overrides: Any) -> FrozenConfig:
        return resolve_config(overrides).to_frozen()

    return _make


@pytest.fixture
def config(config_factory) -> FrozenConfig:
    return config_factory()
