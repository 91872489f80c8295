"""Redis-backed state store shared across processes and instances.

One connection pool is created per process on first use
(``get_shared_redis_store``) and closed by the host on shutdown
(``close_shared_redis_store``).
"""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from ratekeeper.adapters.rate_limit.base import AbstractStateStore
from ratekeeper.core.config import RedisSettings, settings
from ratekeeper.core.errors import ConfigurationAppError, StateStoreAppError

logger = logging.getLogger(__name__)


class RedisStateStore(AbstractStateStore):
    """``AbstractStateStore`` over ``GET`` / ``SET key value EX ttl``."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings | None = None) -> "RedisStateStore":
        """Build a store from connection settings.

        Args:
            redis_settings: Optional settings; defaults to global settings.

        Returns:
            Store with a lazily connecting client (no I/O happens here).

        Raises:
            ConfigurationAppError: If the Redis URL cannot be parsed.
        """
        cfg = redis_settings or settings.redis
        try:
            client = redis.from_url(
                cfg.url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=cfg.socket_timeout_seconds,
                socket_connect_timeout=cfg.socket_connect_timeout_seconds,
            )
        except ValueError as exc:
            raise ConfigurationAppError(
                code="invalid_redis_url",
                message=str(exc),
                details={"field": "REDIS_URL"},
            ) from exc
        return cls(client)

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(key)
        except RedisError as exc:
            raise StateStoreAppError(
                code="state_store_unavailable",
                message="Failed to read rate limit state",
                details={"backend": "redis", "operation": "get"},
            ) from exc

        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, expire_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=expire_seconds)
        except RedisError as exc:
            raise StateStoreAppError(
                code="state_store_unavailable",
                message="Failed to write rate limit state",
                details={"backend": "redis", "operation": "set"},
            ) from exc

    async def close(self) -> None:
        await self._redis.aclose()


_shared_store: RedisStateStore | None = None


def get_shared_redis_store() -> RedisStateStore:
    """Return the process-wide Redis store, creating it on first use."""

    global _shared_store

    if _shared_store is None:
        _shared_store = RedisStateStore.from_settings()
        logger.info("rate_limit.redis_store_created")
    return _shared_store


async def close_shared_redis_store() -> None:
    """Close the process-wide Redis store if it was ever created."""

    global _shared_store

    store, _shared_store = _shared_store, None
    if store is None:
        return

    try:
        await store.close()
    except RedisError as exc:
        logger.warning(
            "rate_limit.redis_store_close_failed",
            extra={"error_type": type(exc).__name__},
        )
    else:
        logger.info("rate_limit.redis_store_closed")
