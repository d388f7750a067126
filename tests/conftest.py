"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before any app import so settings are built
from them.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

# CRITICAL: Set this before any imports that might load settings
os.environ.setdefault("APP_ENV", "testing")

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_THRESHOLD", "10")
os.environ.setdefault("RATE_LIMIT_WINDOW_MINUTES", "1")
os.environ.setdefault("RATE_LIMIT_TTL_SWEEP_GRACE_SECONDS", "60")
os.environ.setdefault("LOG_LEVEL", "WARNING")


NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> Mock:
    """Controllable clock returning NOW until ``return_value`` is changed."""
    return Mock(return_value=NOW)


def advance(clock: Mock, seconds: float) -> None:
    """Move a Mock clock forward."""
    clock.return_value = clock.return_value + timedelta(seconds=seconds)
