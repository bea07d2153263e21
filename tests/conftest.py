"""Shared pytest configuration: markers, execution order and a clean environment."""

from __future__ import annotations

import pytest

_ENV_OVERRIDES = (
    "AGENT_PIPELINE_TRACKING_DIR",
    "AGENT_PIPELINE_MAX_LOOPS",
    "AGENT_PIPELINE_AGENTS_DIR",
)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: multi-module tests on a temporary filesystem")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


@pytest.fixture(autouse=True)
def _clean_pipeline_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's AGENT_PIPELINE_* settings out of the tests."""
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
