"""Sliding-window rate limiter keyed by an arbitrary string."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RateLimitConfig:
    requests_per_second: int = 1000
    window_size: timedelta = timedelta(seconds=60)
    burst_size: int = 100


class RateLimiter:
    """Remembers request times per key and limits keys with too many in the window."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock or _utcnow
        self._requests: dict[str, list[datetime]] = {}
        self._lock = threading.Lock()

    def is_rate_limited(self, key: str) -> bool:
        """Drop requests older than the window and report whether the burst is used up."""
        window_start = self._clock() - self.config.window_size
        with self._lock:
            kept = [t for t in self._requests.get(key, []) if t >= window_start]
            self._requests[key] = kept
            return len(kept) >= self.config.burst_size

    def record_request(self, key: str) -> None:
        """Note a request for the key at the current time."""
        now = self._clock()
        with self._lock:
            self._requests.setdefault(key, []).append(now)