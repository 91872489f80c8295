"""In-process registry of token buckets keyed by identifier.

Buckets are created lazily and seeded from the state store on first use.
The registry is bounded with LRU eviction of idle buckets. Only buckets that
have refilled to capacity are evicted, since a fresh bucket for the same
identifier would behave identically. Partly used buckets stay until they
refill, so the bound is soft under a burst of distinct callers.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections import OrderedDict
from typing import Callable

from ratekeeper.adapters.rate_limit.base import AbstractStateStore, RateLimitConfig
from ratekeeper.adapters.rate_limit.token_bucket import TokenBucket

logger = logging.getLogger(__name__)


class LimiterRegistry:
    """Thread-safe identifier -> TokenBucket mapping with LRU eviction.

    Attributes:
        max_entries: Number of buckets above which full buckets are evicted
            (None for unlimited).
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        store: AbstractStateStore | None,
        *,
        key_prefix: str = "rate-limit:",
        max_entries: int | None = DEFAULT_MAX_ENTRIES,
        store_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1 or None")

        self._store = store
        self._key_prefix = key_prefix
        self._max_entries = max_entries
        self._store_timeout = store_timeout_seconds
        self._clock = clock
        self._buckets: OrderedDict[str, TokenBucket] = OrderedDict()
        self._lock = threading.RLock()
        self._evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def key_for(self, identifier: str) -> str:
        return f"{self._key_prefix}{identifier}"

    def get(self, identifier: str) -> TokenBucket | None:
        """Return the in-memory bucket for ``identifier`` without creating one."""
        with self._lock:
            return self._buckets.get(identifier)

    async def get_or_create(self, identifier: str, config: RateLimitConfig) -> TokenBucket:
        """Return the bucket for ``identifier``, creating and seeding it if needed.

        A new bucket starts full; when the store holds a remaining count for
        the identifier, the difference to capacity is debited so the bucket
        resumes where it was last saved.

        Args:
            identifier: Opaque caller identifier (API key, IP, "anonymous").
            config: Bucket parameters.

        Returns:
            The bucket registered for ``identifier``.
        """
        with self._lock:
            bucket = self._buckets.get(identifier)
            if bucket is not None:
                self._buckets.move_to_end(identifier)  # mark as recently used
                return bucket

        persisted = await self._load_persisted(identifier, config.tokens_per_interval)

        candidate = TokenBucket(
            capacity=config.tokens_per_interval,
            refill_interval_ms=config.interval_ms,
            clock=self._clock,
        )
        if persisted is not None:
            debit = config.tokens_per_interval - persisted
            if debit >= 1:
                candidate.try_remove_tokens(debit)

        with self._lock:
            # Another caller may have created the bucket while we awaited the store
            existing = self._buckets.get(identifier)
            if existing is not None:
                self._buckets.move_to_end(identifier)
                return existing

            self._buckets[identifier] = candidate
            self._evict_if_over_capacity_locked(keep=identifier)

        logger.debug(
            "rate_limit.bucket_created",
            extra={
                "seeded": persisted is not None,
                "persisted_remaining": persisted,
                "buckets": len(self),
            },
        )
        return candidate

    def clear(self) -> None:
        """Drop every in-memory bucket."""
        with self._lock:
            self._buckets.clear()
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._buckets),
                "evictions": self._evictions,
            }

    async def _load_persisted(self, identifier: str, capacity: int) -> int | None:
        """Read the persisted remaining count, treating any failure as a miss."""
        if self._store is None:
            return None

        key = self.key_for(identifier)
        try:
            read = self._store.get(key)
            if self._store_timeout:
                raw = await asyncio.wait_for(read, timeout=self._store_timeout)
            else:
                raw = await read
        except Exception as exc:
            logger.warning(
                "rate_limit.state_load_failed",
                extra={
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return None

        if raw is None:
            return None

        try:
            remaining = float(raw)
        except (TypeError, ValueError):
            logger.warning(
                "rate_limit.state_invalid",
                extra={"reason": "not_a_number"},
            )
            return None

        if not math.isfinite(remaining):
            logger.warning(
                "rate_limit.state_invalid",
                extra={"reason": "not_finite"},
            )
            return None

        return max(0, min(capacity, math.floor(remaining)))

    def _evict_if_over_capacity_locked(self, keep: str) -> None:
        if self._max_entries is None:
            return

        excess = len(self._buckets) - self._max_entries
        if excess <= 0:
            return

        # Least recently used first. A partly used bucket is kept: dropping it
        # would hand the identifier a full bucket on its next request.
        idle = []
        for identifier, bucket in self._buckets.items():
            if identifier == keep:
                continue
            if bucket.get_tokens_remaining() >= bucket.capacity:
                idle.append(identifier)
                if len(idle) == excess:
                    break

        for identifier in idle:
            del self._buckets[identifier]
        self._evictions += len(idle)

        if len(idle) < excess:
            logger.debug(
                "rate_limit.registry_over_capacity",
                extra={
                    "entries": len(self._buckets),
                    "max_entries": self._max_entries,
                },
            )
