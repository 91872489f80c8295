"""Process-wide rate limit manager wiring for the HTTP layer.

Design goals:
- Minimal coupling: the middleware depends on ``get_rate_limit_manager`` only.
- Swap-friendly: the state backend (Redis or memory) is chosen by settings.
- One manager per process so bucket state survives across requests.

Identifier strategy:
- X-API-Key header when present.
- Otherwise the first hop of X-Forwarded-For.
- Otherwise the shared "anonymous" bucket.
"""

from __future__ import annotations

import logging

from fastapi import Request

from ratekeeper.adapters.rate_limit.base import AbstractStateStore, RateLimitConfig
from ratekeeper.adapters.rate_limit.in_memory import InMemoryStateStore
from ratekeeper.core.config import settings
from ratekeeper.services.rate_limit_manager import RateLimitManager

logger = logging.getLogger(__name__)

ANONYMOUS_IDENTIFIER = "anonymous"

_manager: RateLimitManager | None = None
_manager_config: tuple | None = None
_memory_store: InMemoryStateStore | None = None


def _settings_fingerprint() -> tuple:
    cfg = settings.rate_limit
    return (
        cfg.tokens_per_interval,
        cfg.interval,
        cfg.state_backend,
        cfg.state_ttl_seconds,
        cfg.key_prefix,
        cfg.max_tracked_identifiers,
        cfg.store_timeout_seconds,
    )


def _get_memory_store() -> InMemoryStateStore:
    global _memory_store

    if _memory_store is None:
        _memory_store = InMemoryStateStore()
    return _memory_store


def build_state_store() -> AbstractStateStore | None:
    """Return the configured state store.

    Returns:
        The process-wide in-memory store, or None for Redis so the manager
        resolves the shared Redis connection on first use.
    """

    if settings.rate_limit.state_backend == "memory":
        return _get_memory_store()
    return None


def get_rate_limit_manager() -> RateLimitManager:
    """Return the process-wide rate limit manager.

    The instance is cached in-module to preserve bucket state across requests.
    If configuration changes (primarily in tests), the manager is rebuilt.

    Raises:
        ConfigurationAppError: If the configured limit or interval is invalid.
    """

    global _manager, _manager_config

    fingerprint = _settings_fingerprint()
    if _manager is None or _manager_config != fingerprint:
        cfg = settings.rate_limit
        _manager = RateLimitManager(
            RateLimitConfig(
                tokens_per_interval=cfg.tokens_per_interval,
                interval=cfg.interval,
            ),
            build_state_store(),
            key_prefix=cfg.key_prefix,
            state_ttl_seconds=cfg.state_ttl_seconds,
            max_entries=cfg.max_tracked_identifiers or None,
            store_timeout_seconds=cfg.store_timeout_seconds or None,
        )
        _manager_config = fingerprint
        logger.info(
            "rate_limit.manager_configured",
            extra={
                "tokens_per_interval": cfg.tokens_per_interval,
                "interval": cfg.interval,
                "state_backend": cfg.state_backend,
            },
        )

    return _manager


def set_rate_limit_manager(manager: RateLimitManager | None) -> None:
    """Install ``manager`` as the process-wide instance (None resets it)."""

    global _manager, _manager_config

    _manager = manager
    _manager_config = _settings_fingerprint() if manager is not None else None


def derive_identifier(request: Request) -> str:
    """Derive the rate limit identifier for a request.

    Examples:
        >>> # X-API-Key: key-1                  -> "key-1"
        >>> # X-Forwarded-For: 10.0.0.1, 10.0.0.2 -> "10.0.0.1"
        >>> # neither header                    -> "anonymous"
    """

    api_key = request.headers.get("x-api-key")
    if api_key:
        return api_key

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    return ANONYMOUS_IDENTIFIER
