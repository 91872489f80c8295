"""In-memory state store with per-key expiry.

Notes:
- Per-process only: state does not survive restarts or span workers.
- Thread-safe: uses a lock around shared state.
- Used in tests and for ``RATE_LIMIT_STATE_BACKEND=memory``.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from ratekeeper.adapters.rate_limit.base import AbstractStateStore


@dataclass
class _StoredValue:
    value: str
    expires_at: float


class InMemoryStateStore(AbstractStateStore):
    """Dict-backed ``AbstractStateStore`` honouring expirations."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._values: dict[str, _StoredValue] = {}

    async def get(self, key: str) -> str | None:
        with self._lock:
            item = self._values.get(key)
            if item is None:
                return None
            if self._clock() >= item.expires_at:
                self._values.pop(key, None)
                return None
            return item.value

    async def set(self, key: str, value: str, expire_seconds: int) -> None:
        if expire_seconds < 1:
            raise ValueError("expire_seconds must be >= 1")

        with self._lock:
            self._values[key] = _StoredValue(
                value=str(value),
                expires_at=self._clock() + expire_seconds,
            )

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
