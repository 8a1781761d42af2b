"""Process-local fixed-window rate limiter.

Counters live in this process only and are lost on restart; good enough to
slow down password guessing against a single deployment, not a distributed
limiter.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable

from cachetools import TTLCache


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float

    def retry_after(self, now: float) -> float:
        return max(0.0, self.reset_time - now)


class RateLimiter:
    def __init__(self, max_requests: int = 5, window_seconds: float = 60.0,
                 max_keys: int = 10000, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        # Stale entries drop out on their own once the window has elapsed
        self._entries: TTLCache = TTLCache(maxsize=max_keys, ttl=window_seconds, timer=clock)
        self._lock = threading.Lock()

    def check(self, identifier: str) -> RateLimitResult:
        key = f"ratelimit:{identifier}"
        with self._lock:
            now = self.clock()
            entry = self._entries.get(key)

            if entry is None or entry.reset_time <= now:
                entry = RateLimitEntry(count=1, reset_time=now + self.window_seconds)
                self._entries[key] = entry
                return RateLimitResult(True, self.max_requests - 1, entry.reset_time)

            if entry.count >= self.max_requests:
                return RateLimitResult(False, 0, entry.reset_time)

            # Mutated in place so the cache expiry stays pinned to the first hit
            entry.count += 1
            return RateLimitResult(True, self.max_requests - entry.count, entry.reset_time)

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(f"ratelimit:{identifier}", None)


def client_ip(headers, fallback: str = "unknown") -> str:
    """First client address from the usual proxy headers."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(header)
        if value:
            return value.strip()
    return fallback
