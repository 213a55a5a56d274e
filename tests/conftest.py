"""Shared fixtures and markers for snapcheck test suite."""

from __future__ import annotations

import pytest

_SETTINGS_ENV = ("SNAPCHECK_METRIC", "SNAPCHECK_DEVICE", "SNAPCHECK_DELTA_E", "SNAPCHECK_SCALE")


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "torch: requires torch installed")


@pytest.fixture(autouse=True)
def _clean_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test with default settings regardless of the caller's shell."""
    for key in _SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)
