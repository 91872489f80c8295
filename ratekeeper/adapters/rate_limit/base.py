"""Rate limiter configuration and state store interface.

The manager depends on ``AbstractStateStore`` rather than a concrete backend so
Redis can be swapped for an in-memory store in tests or single-node setups.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Final

from ratekeeper.core.errors import ConfigurationAppError

INTERVAL_MS: Final[dict[str, int]] = {
    "second": 1000,
    "sec": 1000,
    "minute": 60_000,
    "min": 60_000,
    "hour": 3_600_000,
    "hr": 3_600_000,
    "day": 86_400_000,
}


def resolve_interval_ms(interval: int | str) -> int:
    """Resolve a symbolic or numeric interval into milliseconds.

    Args:
        interval: Positive milliseconds, a digit string, or one of the keys
            of ``INTERVAL_MS``.

    Returns:
        Interval length in milliseconds.

    Raises:
        ConfigurationAppError: If the interval is unknown or not positive.

    Examples:
        >>> resolve_interval_ms("minute")
        60000
        >>> resolve_interval_ms("1500")
        1500
    """

    if isinstance(interval, bool):
        raise ConfigurationAppError(
            code="invalid_interval",
            message="interval must be a duration in ms or a named window",
            details={"field": "interval", "value": str(interval)},
        )

    if isinstance(interval, str):
        name = interval.strip().lower()
        if name in INTERVAL_MS:
            return INTERVAL_MS[name]
        if not name.isdigit():
            raise ConfigurationAppError(
                code="invalid_interval",
                message=f"Unknown interval {interval!r}",
                details={
                    "field": "interval",
                    "value": interval,
                    "hint": "Use second, minute, hour, day or milliseconds",
                },
            )
        interval = int(name)

    if not isinstance(interval, int) or interval <= 0:
        raise ConfigurationAppError(
            code="invalid_interval",
            message="interval must be a positive number of milliseconds",
            details={"field": "interval", "value": str(interval)},
        )
    return interval


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable bucket parameters shared by every bucket of a manager.

    Attributes:
        tokens_per_interval: Bucket capacity and tokens regenerated per interval.
        interval: Milliseconds or a named window (second, minute, hour, day).
    """

    tokens_per_interval: int = 100
    interval: int | str = "hour"

    def __post_init__(self) -> None:
        tokens = self.tokens_per_interval
        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
            raise ConfigurationAppError(
                code="invalid_tokens_per_interval",
                message="tokens_per_interval must be a positive integer",
                details={"field": "tokens_per_interval", "value": str(tokens)},
            )
        # Fail fast on unknown intervals
        resolve_interval_ms(self.interval)

    @property
    def interval_ms(self) -> int:
        return resolve_interval_ms(self.interval)


DEFAULT_RATE_LIMIT_CONFIG = RateLimitConfig()


class AbstractStateStore(ABC):
    """Keyed storage with expiry holding remaining-token counts.

    No transactional guarantee spans ``get`` and ``set``; callers accept
    read-then-write races.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the last persisted value, or None if absent or expired."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str, expire_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``expire_seconds``, overwriting."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources. No-op by default."""
        return None
