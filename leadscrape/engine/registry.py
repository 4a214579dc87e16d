"""Process-lifetime registry of rate limiters, circuit breakers and egress pools."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable

from ..config import CircuitBreakerConfig, GlobalConfig, RateLimitConfig
from ..infra import ProxyPool, UserAgentPool
from .circuit_breaker import CircuitBreaker, CircuitStats
from .rate_limiter import TokenBucket
from .thread_pool import ThreadPoolManager

BREAKER_POOL = "breakers"


class ResilienceRegistry:
    """Own the shared resilience state, keyed by name.

    Built once at startup and handed to whatever needs a limiter or breaker,
    so every client of the same source paces against the same bucket.
    """

    def __init__(
        self,
        *,
        proxy_pool: ProxyPool | None = None,
        ua_pool: UserAgentPool | None = None,
        thread_pool: ThreadPoolManager | None = None,
        breaker_workers: int = 8,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.proxy_pool = proxy_pool
        self.ua_pool = ua_pool or UserAgentPool.default()
        self.thread_pool = thread_pool or ThreadPoolManager()
        self.breaker_workers = breaker_workers
        self._clock = clock
        self._sleep = sleep
        self._limiters: dict[str, TokenBucket] = {}
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    @classmethod
    def from_config(
        cls,
        config: GlobalConfig,
        thread_pool: ThreadPoolManager | None = None,
    ) -> "ResilienceRegistry":
        proxy_pool = ProxyPool.from_config(config.proxy_pool) if config.proxy_pool.enabled else None
        ua_pool = None
        if isinstance(config.user_agent_list, list) and config.user_agent_list:
            ua_pool = UserAgentPool(config.user_agent_list)
        return cls(
            proxy_pool=proxy_pool,
            ua_pool=ua_pool,
            thread_pool=thread_pool or ThreadPoolManager(config.thread_pool_workers),
            breaker_workers=config.thread_pool_workers,
        )

    # ------------------------------------------------------------------
    def rate_limiter(self, name: str, config: RateLimitConfig | None = None) -> TokenBucket:
        """Return the bucket for ``name``, creating it from ``config`` on first use."""

        with self._lock:
            bucket = self._limiters.get(name)
            if bucket is None:
                bucket = TokenBucket.from_config(
                    name, config or RateLimitConfig(), clock=self._clock, sleep=self._sleep
                )
                self._limiters[name] = bucket
            return bucket

    def breaker(
        self,
        source: str,
        operation: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Return the breaker guarding ``operation`` against ``source``."""

        key = f"{source}:{operation}"
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker(
                    key,
                    config,
                    executor=self.thread_pool.get(BREAKER_POOL, self.breaker_workers),
                    clock=self._clock,
                )
                self._breakers[key] = breaker
            return breaker

    def breaker_stats(self) -> list[CircuitStats]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [breaker.stats() for breaker in breakers]

    def limiter_names(self) -> list[str]:
        with self._lock:
            return sorted(self._limiters)

    def shutdown(self) -> None:
        self.thread_pool.shutdown()


__all__ = ["ResilienceRegistry"]
