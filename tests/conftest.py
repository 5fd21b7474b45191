"""Pytest configuration and shared fixtures."""

import pytest

# The ds1820bridge testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  In our own test suite
# we disable it (``-p no:ds1820bridge``) and load it here instead, so
# that the import chain is measured by pytest-cov.
pytest_plugins = ["ds1820bridge.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (run real threads)"
    )
