"""In-memory fixed-window rate limiting for the public API."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class _WindowRecord:
    count: int
    resets_at: float


class RateLimiter:
    """Allow at most ``limit`` hits per key within each ``window`` seconds."""

    def __init__(
        self,
        *,
        limit: int = 100,
        window: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self._limit = limit
        self._window = window
        self._clock = clock
        self._records: Dict[str, _WindowRecord] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def hit(self, key: str) -> bool:
        """Record a request for ``key``; return ``False`` once over the limit."""

        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None or record.resets_at <= now:
                self._records[key] = _WindowRecord(count=1, resets_at=now + self._window)
                self._prune(now)
                return True
            record.count += 1
            return record.count <= self._limit

    def retry_after(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return 0
            return max(int(record.resets_at - now + 0.999), 0)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def _prune(self, now: float) -> None:
        expired = [key for key, record in self._records.items() if record.resets_at <= now]
        for key in expired:
            self._records.pop(key, None)


__all__ = ["RateLimiter"]
