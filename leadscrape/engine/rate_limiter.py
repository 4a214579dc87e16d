"""Token bucket rate limiting, one bucket per upstream source."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable

import structlog

from ..config import RateLimitConfig

# Upper bound on a single sleep so refill is re-evaluated at least once a second.
MAX_SLEEP_SECONDS = 1.0


class TokenBucket:
    """Lazily refilled token bucket.

    Tokens are topped up from elapsed time on every access; there is no
    background timer. ``acquire`` blocks, ``try_acquire`` never does.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.name = name
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill_at = clock()
        self._lock = Lock()
        self.logger = structlog.get_logger("leadscrape.rate_limiter").bind(limiter=name)

    @classmethod
    def from_window(
        cls,
        name: str,
        max_requests: int,
        window_ms: int,
        **kwargs,
    ) -> "TokenBucket":
        return cls(max_requests, max_requests / (window_ms / 1000), name=name, **kwargs)

    @classmethod
    def from_config(cls, name: str, config: RateLimitConfig, **kwargs) -> "TokenBucket":
        return cls.from_window(name, config.max_requests, config.window_ms, **kwargs)

    # ------------------------------------------------------------------
    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill_at = now

    def _check(self, tokens: float) -> None:
        if tokens <= 0:
            raise ValueError("token count must be positive")
        if tokens > self.capacity:
            raise ValueError(
                f"cannot acquire {tokens} tokens from bucket '{self.name}' of capacity {self.capacity}"
            )

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def wait_time(self, tokens: float = 1) -> float:
        """Seconds until ``tokens`` would be available, ``0`` if available now."""

        with self._lock:
            self._refill()
            missing = tokens - self._tokens
        return max(0.0, missing / self.refill_rate)

    def try_acquire(self, tokens: float = 1) -> bool:
        self._check(tokens)
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def acquire(self, tokens: float = 1) -> float:
        """Block until ``tokens`` are debited; return the seconds spent waiting."""

        self._check(tokens)
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    break
                wait = (tokens - self._tokens) / self.refill_rate
            pause = min(wait, MAX_SLEEP_SECONDS)
            self._sleep(pause)
            waited += pause
        if waited:
            self.logger.debug("rate_limit_wait", waited_ms=round(waited * 1000, 1))
        return waited


__all__ = ["TokenBucket", "MAX_SLEEP_SECONDS"]
