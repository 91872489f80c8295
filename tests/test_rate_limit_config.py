"""Tests for rate limit configuration parsing and validation."""

from dataclasses import FrozenInstanceError

import pytest

from ratekeeper.adapters.rate_limit.base import RateLimitConfig, resolve_interval_ms
from ratekeeper.core.config import RateLimitSettings
from ratekeeper.core.errors import ConfigurationAppError


@pytest.mark.parametrize(
    ("interval", "expected"),
    [
        ("second", 1000),
        ("sec", 1000),
        ("minute", 60_000),
        ("min", 60_000),
        ("hour", 3_600_000),
        ("hr", 3_600_000),
        ("day", 86_400_000),
        ("Minute", 60_000),
        (" hour ", 3_600_000),
        (250, 250),
        ("1500", 1500),
    ],
)
def test_resolve_interval_ms(interval, expected) -> None:
    assert resolve_interval_ms(interval) == expected


@pytest.mark.parametrize("interval", ["week", "", "1.5", "-100", 0, -5, True, 2.5])
def test_resolve_interval_rejects_invalid_values(interval) -> None:
    with pytest.raises(ConfigurationAppError) as exc_info:
        resolve_interval_ms(interval)

    assert exc_info.value.code == "invalid_interval"


def test_default_config_is_100_per_hour() -> None:
    config = RateLimitConfig()

    assert config.tokens_per_interval == 100
    assert config.interval_ms == 3_600_000


@pytest.mark.parametrize("tokens", [0, -1, 1.5, True, "10"])
def test_config_rejects_invalid_tokens(tokens) -> None:
    with pytest.raises(ConfigurationAppError) as exc_info:
        RateLimitConfig(tokens_per_interval=tokens, interval="second")

    assert exc_info.value.code == "invalid_tokens_per_interval"


def test_config_fails_fast_on_unknown_interval() -> None:
    with pytest.raises(ConfigurationAppError):
        RateLimitConfig(tokens_per_interval=10, interval="fortnight")


def test_config_is_immutable() -> None:
    config = RateLimitConfig(tokens_per_interval=2, interval="second")

    with pytest.raises(FrozenInstanceError):
        config.tokens_per_interval = 3  # type: ignore[misc]


def test_settings_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_TOKENS_PER_INTERVAL", "25")
    monkeypatch.setenv("RATE_LIMIT_INTERVAL", "minute")
    monkeypatch.setenv("RATE_LIMIT_EXEMPT_PATHS", "/health, /metrics ,")

    cfg = RateLimitSettings()

    assert cfg.tokens_per_interval == 25
    assert cfg.interval == "minute"
    assert cfg.exempt_path_set == frozenset({"/health", "/metrics"})
    assert cfg.state_ttl_seconds == 3600
    assert cfg.key_prefix == "rate-limit:"
