"""Token bucket used for per-identifier admission decisions.

Notes:
- Thread-safe: refill and debit run in a single critical section.
- The critical section never awaits, so it is also atomic on the event loop.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class TokenBucket:
    """Bucket holding up to ``capacity`` tokens, refilled continuously.

    ``capacity`` tokens regenerate over ``refill_interval_ms``. Fractional
    tokens are kept internally; removal is in whole units.
    """

    def __init__(
        self,
        *,
        capacity: int,
        refill_interval_ms: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Create a full bucket.

        Args:
            capacity: Maximum number of tokens.
            refill_interval_ms: Window over which ``capacity`` tokens regenerate.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If capacity or refill_interval_ms are invalid.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_interval_ms < 1:
            raise ValueError("refill_interval_ms must be >= 1")

        self._capacity = capacity
        self._refill_interval_ms = refill_interval_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._last_refill = clock()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"TokenBucket(capacity={self._capacity}, "
            f"refill_interval_ms={self._refill_interval_ms}, tokens={self._tokens:.3f})"
        )

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def refill_interval_ms(self) -> int:
        return self._refill_interval_ms

    def _refill_locked(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000
        if elapsed_ms <= 0:
            # Wall clock moved backwards (or no time passed): nothing to add,
            # and keep the later timestamp so the gap isn't credited twice.
            return

        refill = elapsed_ms / self._refill_interval_ms * self._capacity
        self._tokens = min(float(self._capacity), self._tokens + refill)
        self._last_refill = now

    def try_remove_tokens(self, count: int = 1) -> bool:
        """Refill, then remove ``count`` tokens if enough are available.

        Args:
            count: Tokens to remove (default 1).

        Returns:
            True if the tokens were removed, False if the bucket is short
            (in which case the token count is left unchanged).

        Raises:
            ValueError: If count is lower than 1.
        """
        if count < 1:
            raise ValueError("count must be >= 1")

        with self._lock:
            self._refill_locked()
            if self._tokens >= count:
                self._tokens -= count
                return True
            return False

    def get_tokens_remaining(self) -> float:
        """Return the current token count after the lazy refill step."""
        with self._lock:
            self._refill_locked()
            return self._tokens

    def seconds_until_available(self, count: int = 1) -> float:
        """Return how long until ``count`` tokens are available (0 if now).

        Raises:
            ValueError: If count is lower than 1 or above capacity, since such
                a count can never be satisfied.
        """
        if count < 1:
            raise ValueError("count must be >= 1")
        if count > self._capacity:
            raise ValueError("count must not exceed capacity")

        with self._lock:
            self._refill_locked()
            missing = count - self._tokens
            if missing <= 0:
                return 0.0
            return missing / self._capacity * self._refill_interval_ms / 1000
