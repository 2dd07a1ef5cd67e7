"""
Rate limiting for the authorize and token endpoints. In-memory sliding window per key (client IP).
Failed token requests consume extra slots so brute-force attempts run out of quota sooner.
"""
import math
import threading
import time

from fastapi import Request

_WINDOW_SECONDS = 60
# A failure costs the request itself plus this many slots (10x total)
DEFAULT_FAILURE_PENALTY = 9


class RateLimiter:
    def __init__(self, name: str, limit: int, window_seconds: int = _WINDOW_SECONDS):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self._store: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def _recent(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        timestamps = [t for t in self._store.get(key, []) if t > cutoff]
        if timestamps:
            self._store[key] = timestamps
        else:
            self._store.pop(key, None)
        return timestamps

    def check_and_consume(self, key: str) -> tuple[bool, int | None]:
        """
        Check if the key is under the limit for the sliding window; if so, record this request.
        Returns (allowed, retry_after_seconds). When not allowed, retry_after_seconds is the
        suggested Retry-After value (>= 1).
        """
        if self.limit <= 0:
            return True, None
        now = time.monotonic()
        with self._lock:
            timestamps = self._recent(key, now)
            if len(timestamps) >= self.limit:
                retry_after = max(1, math.ceil(self.window_seconds - (now - min(timestamps))))
                return False, retry_after
            timestamps.append(now)
            self._store[key] = timestamps
            return True, None

    def record_failure(self, key: str, penalty: int = DEFAULT_FAILURE_PENALTY) -> int:
        """Charge penalty extra slots to key. Returns the penalty applied."""
        if penalty <= 0 or self.limit <= 0:
            return 0
        now = time.monotonic()
        with self._lock:
            timestamps = self._recent(key, now)
            timestamps.extend([now] * penalty)
            self._store[key] = timestamps
        return penalty

    def prune(self) -> int:
        """Forget keys with no requests inside the window. Returns how many were dropped."""
        now = time.monotonic()
        with self._lock:
            stale = [key for key in list(self._store) if not self._recent(key, now)]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


def get_client_ip(request: Request | None) -> str:
    """Client IP if available (request.client.host), else a shared bucket."""
    if request is None or request.client is None:
        return "unknown"
    return getattr(request.client, "host", None) or "unknown"
