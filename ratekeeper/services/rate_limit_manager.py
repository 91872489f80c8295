"""Admission decisions backed by in-process buckets and a shared state store.

The in-memory decision is authoritative and synchronous; persistence is
best-effort. Store failures are logged and never reach the caller of
``is_rate_limited``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ratekeeper.adapters.rate_limit.base import (
    DEFAULT_RATE_LIMIT_CONFIG,
    AbstractStateStore,
    RateLimitConfig,
)
from ratekeeper.adapters.rate_limit.redis_store import get_shared_redis_store
from ratekeeper.adapters.rate_limit.registry import LimiterRegistry
from ratekeeper.adapters.rate_limit.token_bucket import TokenBucket

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "rate-limit:"
DEFAULT_STATE_TTL_SECONDS = 3600


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of an identifier's bucket.

    Attributes:
        limit: Bucket capacity.
        remaining: Whole tokens currently available.
        retry_after_seconds: Seconds until one token is available (None if now).
        interval_ms: Refill interval in milliseconds.
    """

    limit: int
    remaining: int
    retry_after_seconds: int | None
    interval_ms: int


class RateLimitManager:
    """Per-identifier token-bucket limiter with persisted remaining counts.

    Args:
        config: Bucket parameters (default: 100 tokens per hour).
        store: State store. When omitted, ``store_factory`` is called on
            first use.
        key_prefix: Prefix of persisted state keys.
        state_ttl_seconds: Expiry applied to persisted counts.
        max_entries: Bound on in-memory buckets (None for unlimited).
        store_timeout_seconds: Optional bound on each store call.
        clock: Time source returning UNIX time in seconds.
        store_factory: Builds the store when none is given (default: the
            process-wide Redis store).
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        store: AbstractStateStore | None = None,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        state_ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        max_entries: int | None = LimiterRegistry.DEFAULT_MAX_ENTRIES,
        store_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        store_factory: Callable[[], AbstractStateStore] = get_shared_redis_store,
    ) -> None:
        if state_ttl_seconds < 1:
            raise ValueError("state_ttl_seconds must be >= 1")

        self._config = config or DEFAULT_RATE_LIMIT_CONFIG
        self._store = store
        self._store_factory = store_factory
        self._key_prefix = key_prefix
        self._state_ttl = state_ttl_seconds
        self._max_entries = max_entries
        self._store_timeout = store_timeout_seconds
        self._clock = clock
        self._registry: LimiterRegistry | None = None
        self._init_lock = threading.Lock()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def key_for(self, identifier: str) -> str:
        return f"{self._key_prefix}{identifier}"

    def _resolve_store(self) -> AbstractStateStore | None:
        """Build the store from the factory, or None if it cannot be built.

        Without a store, decisions are made from in-memory buckets only and
        nothing is persisted. The factory is not retried.
        """
        try:
            return self._store_factory()
        except Exception as exc:
            logger.error(
                "rate_limit.state_store_unavailable",
                extra={
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return None

    def _get_registry(self) -> LimiterRegistry:
        """Return the registry, resolving the store on first use."""
        if self._registry is None:
            with self._init_lock:
                if self._registry is None:
                    if self._store is None:
                        self._store = self._resolve_store()
                    self._registry = LimiterRegistry(
                        self._store,
                        key_prefix=self._key_prefix,
                        max_entries=self._max_entries,
                        store_timeout_seconds=self._store_timeout,
                        clock=self._clock,
                    )
        return self._registry

    def _existing_bucket(self, identifier: str) -> TokenBucket | None:
        if self._registry is None:
            return None
        return self._registry.get(identifier)

    async def is_rate_limited(self, identifier: str) -> bool:
        """Consume one token for ``identifier``.

        Returns:
            True if the caller must be rejected, False if admitted (one token
            has been consumed).
        """
        bucket = await self._get_registry().get_or_create(identifier, self._config)
        return not bucket.try_remove_tokens(1)

    async def save_state(self, identifier: str) -> int | None:
        """Persist the remaining token count for ``identifier``.

        No-op when no bucket exists yet. The count is floored so a restart
        never grants more capacity than was left. Failures are logged and
        dropped.

        Returns:
            The whole tokens left in the bucket (whether or not the write
            succeeded), or None when there is no bucket.
        """
        bucket = self._existing_bucket(identifier)
        if bucket is None:
            return None

        remaining = math.floor(bucket.get_tokens_remaining())
        store = self._store
        if store is None:
            return remaining

        try:
            write = store.set(self.key_for(identifier), str(remaining), self._state_ttl)
            if self._store_timeout:
                await asyncio.wait_for(write, timeout=self._store_timeout)
            else:
                await write
        except Exception as exc:
            logger.warning(
                "rate_limit.state_save_failed",
                extra={
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
        return remaining

    async def get_status(self, identifier: str) -> RateLimitStatus:
        """Describe ``identifier``'s bucket without consuming tokens."""
        bucket = await self._get_registry().get_or_create(identifier, self._config)
        wait = bucket.seconds_until_available(1)
        return RateLimitStatus(
            limit=bucket.capacity,
            remaining=math.floor(bucket.get_tokens_remaining()),
            retry_after_seconds=int(math.ceil(wait)) if wait > 0 else None,
            interval_ms=bucket.refill_interval_ms,
        )
