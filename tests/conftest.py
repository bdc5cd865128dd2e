"""Shared pytest configuration and fixtures."""

import os

# Make sure the environment doesn't leak into option resolution
for _name in ("SENDLOG_DB", "SENDLOG_RETENTION_HOURS", "SENDLOG_CLEANUP_INTERVAL"):
    os.environ.pop(_name, None)


import pytest

from sendlog.metrics import metrics

pytest_plugins = ["sendlog.testing"]


@pytest.fixture(autouse=True, scope="function")
def reset_metrics():
    """Reset global metrics before each test function."""
    metrics.reset()
    yield
