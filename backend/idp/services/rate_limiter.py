"""Simple in-memory rate limiting utilities."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    count: int
    reset_at: float


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: float


class InMemoryRateLimiter:
    """
    Fixed-window rate limiter keyed by an arbitrary string.

    Counters live in process memory, so limits are best-effort when several
    instances run side by side. Expired buckets are evicted periodically to
    keep memory bounded.
    """

    def __init__(
        self,
        max_buckets: int = 10000,
        cleanup_interval: float = 60.0,
        clock=time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._buckets: Dict[str, _Bucket] = {}
        self._max_buckets = max_buckets
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._last_cleanup = clock()

    @staticmethod
    def build_key(scope: str, *parts: Optional[str]) -> str:
        return ":".join(["rl", scope, *[p or "-" for p in parts]])

    def _evict_expired(self, now: float, force: bool = False) -> None:
        if not force and now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        expired = [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]
        for key in expired:
            del self._buckets[key]
        if expired:
            logger.debug("Evicted %d expired rate-limit buckets", len(expired))

    def check(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        now = self._clock()

        with self._lock:
            self._evict_expired(now)
            if len(self._buckets) >= self._max_buckets and key not in self._buckets:
                self._evict_expired(now, force=True)
                if len(self._buckets) >= self._max_buckets:
                    logger.warning("Rate limiter bucket table full (%d); rejecting", len(self._buckets))
                    return RateLimitResult(allowed=False, remaining=0, retry_after=window_seconds)

            bucket = self._buckets.get(key)
            if bucket is None or bucket.reset_at <= now:
                self._buckets[key] = _Bucket(count=1, reset_at=now + window_seconds)
                return RateLimitResult(allowed=True, remaining=limit - 1, retry_after=0.0)

            if bucket.count >= limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=max(0.0, bucket.reset_at - now),
                )

            bucket.count += 1
            return RateLimitResult(allowed=True, remaining=limit - bucket.count, retry_after=0.0)

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        return self.check(key, limit, window_seconds).allowed

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)
