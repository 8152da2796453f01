from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from studio_site.utils.log import logger
from studio_site.utils.periodic import PeriodicTask
from studio_site.utils.time import iso_utc


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    window_s: float
    max_requests: int
    key_prefix: str = ""


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int | None = None  # seconds until reset (rejections only)

    def headers(self) -> dict[str, str]:
        out = {
            "X-RateLimit-Remaining": str(int(self.remaining)),
            "X-RateLimit-Reset": iso_utc(self.reset_at),
        }
        if self.retry_after:
            out["Retry-After"] = str(int(self.retry_after))
        return out


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


# Predefined configurations
LOGIN = RateLimitConfig(window_s=60, max_requests=5, key_prefix="login")
BOOKING = RateLimitConfig(window_s=300, max_requests=10, key_prefix="booking")
REVIEW = RateLimitConfig(window_s=3600, max_requests=5, key_prefix="review")
API = RateLimitConfig(window_s=60, max_requests=100, key_prefix="api")
ADMIN = RateLimitConfig(window_s=60, max_requests=30, key_prefix="admin")

RATE_LIMITS: dict[str, RateLimitConfig] = {
    "LOGIN": LOGIN,
    "BOOKING": BOOKING,
    "REVIEW": REVIEW,
    "API": API,
    "ADMIN": ADMIN,
}


class RateLimiter:
    """
    Fixed-window request counter, in-process only.

    Keys are "<prefix>:<identifier>" (e.g. "login:203.0.113.7"). Counters are lost
    on restart. A periodic sweep drops finished windows to bound memory; expiry
    itself is decided at check time.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_s: float = 60.0,
    ) -> None:
        self._clock = clock
        self._mem: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask(
            self.sweep, interval_s=sweep_interval_s, name="ratelimit.sweep"
        )

    def __len__(self) -> int:
        return len(self._mem)

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        key = f"{config.key_prefix}:{identifier}"
        limit = int(config.max_requests)
        with self._lock:
            now = self._clock()
            w = self._mem.get(key)
            if w is None or now >= w.reset_at:
                w = _Window(count=1, reset_at=now + float(config.window_s))
                self._mem[key] = w
                return RateLimitResult(allowed=True, remaining=max(0, limit - 1), reset_at=w.reset_at)

            w.count += 1
            if w.count > limit:
                retry_after = max(1, math.ceil(w.reset_at - now))
                result = RateLimitResult(
                    allowed=False, remaining=0, reset_at=w.reset_at, retry_after=retry_after
                )
            else:
                return RateLimitResult(allowed=True, remaining=limit - w.count, reset_at=w.reset_at)
        logger.warning("rate_limit_rejected", key_prefix=config.key_prefix, retry_after=retry_after)
        return result

    def sweep(self) -> int:
        removed = 0
        # Key snapshot without the lock; each removal re-checks under it.
        for key in list(self._mem):
            with self._lock:
                w = self._mem.get(key)
                if w is not None and self._clock() >= w.reset_at:
                    del self._mem[key]
                    removed += 1
        if removed:
            logger.debug("ratelimit_swept", removed=removed, remaining=len(self._mem))
        return removed

    def start(self) -> None:
        self._sweeper.start()

    def shutdown(self) -> None:
        self._sweeper.stop()
