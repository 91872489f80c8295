"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any import that loads settings so the
suite never needs a running Redis.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ["RATE_LIMIT_STATE_BACKEND"] = "memory"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from ratekeeper.core.rate_limit import set_rate_limit_manager


class FakeClock:
    """Deterministic clock returning UNIX seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_rate_limit_manager():
    set_rate_limit_manager(None)
    yield
    set_rate_limit_manager(None)
