"""Pytest configuration for dungeonsmith tests."""

import logging

import pytest

console_logger = logging.getLogger(__name__)


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config):  # noqa: ARG001
    """Record debug messages from the library so failing tests show search steps."""
    del config  # Unused but required by hookspec.
    logging.getLogger("dungeonsmith").setLevel(logging.DEBUG)
