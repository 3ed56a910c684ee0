from __future__ import annotations

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable

from ..core.ports.rate_limiter_port import RateLimiterPort
from ..core.ports.cache_port import CachePort

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter(RateLimiterPort):
    """Sliding window rate limiter that tracks request timestamps over a time window.

    Supports optional persistent storage via CachePort so that several processes
    sharing one API key also share its budget.

    Example:
        # NVD API without a key: 5 requests per rolling 30 seconds
        limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=30.0)

        # With an API key, persisted under the key's hash
        limiter = SlidingWindowRateLimiter(
            max_requests=50,
            window_seconds=30.0,
            cache=cache_port,
            namespace="nvd_3f2a9c1b7e0d",
        )
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        cache: CachePort | None = None,
        namespace: str | None = None,
        *,
        time_fn: Callable[[], float] = time.time,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize sliding window rate limiter.

        Args:
            max_requests: Maximum number of requests allowed in the time window
            window_seconds: Time window in seconds
            cache: Optional CachePort for persistent storage across processes
            namespace: Optional namespace for cache keys (e.g., hashed API key).
                      Cache is only used if namespace is provided.
            time_fn: Wall clock in seconds; time.time() keeps keys comparable across processes
            sleep_fn: Blocking sleep
        """
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._max_requests = max_requests
        self._window = window_seconds
        self._cache = cache if namespace else None
        self._namespace = namespace
        self._time = time_fn
        self._sleep = sleep_fn
        self._timestamps: deque[float] = deque()
        self._lock = Lock()

        if self._cache:
            self._load_from_cache()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window

    def _get_cache_prefix(self) -> str:
        return f"rate_limit:{self._namespace}:"

    def _load_from_cache(self) -> None:
        if not self._cache:
            return

        cutoff = self._time() - self._window
        timestamps: list[float] = []
        for key in self._cache.iter_keys(self._get_cache_prefix()):
            # "rate_limit:{namespace}:{timestamp}"
            try:
                ts = float(key.rsplit(":", 1)[-1])
            except ValueError:
                continue
            if ts > cutoff:
                timestamps.append(ts)

        timestamps.sort()
        self._timestamps = deque(timestamps)

    def _save_timestamp_to_cache(self, timestamp: float) -> None:
        if not self._cache:
            return
        # TTL slightly longer than the window to tolerate clock skew
        ttl = int(self._window + 60)
        self._cache.set(f"{self._get_cache_prefix()}{timestamp}", b"", ttl_seconds=ttl)

    def _cleanup_old_cache_entries(self, cutoff: float) -> None:
        if not self._cache:
            return
        for key in list(self._cache.iter_keys(self._get_cache_prefix())):
            try:
                ts = float(key.rsplit(":", 1)[-1])
            except ValueError:
                continue
            if ts <= cutoff:
                self._cache.delete(key)

    def _evict(self, cutoff: float) -> None:
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def acquire(self) -> None:
        """Block until one more request fits in the window, then record it."""
        with self._lock:
            if self._cache:
                self._load_from_cache()

            now = self._time()
            cutoff = now - self._window
            self._evict(cutoff)
            if self._cache:
                self._cleanup_old_cache_entries(cutoff)

            if len(self._timestamps) >= self._max_requests:
                wait = self._timestamps[0] + self._window - now
                if wait > 0:
                    logger.info(f"Rate limit reached ({self._max_requests}/{self._window:g}s), waiting {wait:.1f}s")
                    self._sleep(wait)
                if self._cache:
                    self._load_from_cache()
                self._evict(self._time() - self._window)

            now = self._time()
            self._timestamps.append(now)
            self._save_timestamp_to_cache(now)
