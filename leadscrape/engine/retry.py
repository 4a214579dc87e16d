"""Retry with exponential backoff, jitter and retryability classification."""

from __future__ import annotations

import random
import time
from typing import Callable, TypeVar

import httpx
import structlog

from ..config import RetryConfig
from ..errors import RateLimitError

T = TypeVar("T")

OnRetry = Callable[[Exception, int, float], None]

TRANSIENT_MESSAGE_MARKERS = (
    "econnreset",
    "econnrefused",
    "etimedout",
    "enotfound",
    "connection reset",
    "connection refused",
    "connection aborted",
    "timed out",
    "timeout",
    "name or service not known",
    "temporary failure in name resolution",
    "socket hang up",
    "network",
    "rate limit",
)


def _status_code(error: Exception) -> int | None:
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(error: Exception, policy: RetryConfig | None = None) -> bool:
    """Decide whether ``error`` is worth another attempt."""

    policy = policy or RetryConfig()
    flag = getattr(error, "retryable", None)
    if flag is False:
        return False
    if isinstance(error, (httpx.TransportError, RateLimitError)):
        return True
    message = str(error).lower()
    if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
        return True
    status = _status_code(error)
    if status is not None and status in policy.retryable_status_codes:
        return True
    return flag is True


def compute_delay_ms(
    attempt: int,
    policy: RetryConfig,
    rng: Callable[[], float] = random.random,
) -> float:
    """Backoff for 1-based ``attempt``: capped doubling with symmetric jitter."""

    base = min(policy.base_delay_ms * 2 ** (attempt - 1), policy.max_delay_ms)
    jitter = base * policy.jitter_percent * (rng() * 2 - 1)
    return max(0.0, base + jitter)


class RetryExecutor:
    """Run an operation, retrying transient failures up to ``max_retries`` times."""

    def __init__(
        self,
        policy: RetryConfig | None = None,
        *,
        on_retry: OnRetry | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[], float] = random.random,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.policy = policy or RetryConfig()
        self.on_retry = on_retry
        self._sleep = sleep
        self._rng = rng
        self.logger = logger or structlog.get_logger("leadscrape.retry")

    def delay_for(self, error: Exception, attempt: int) -> float:
        if isinstance(error, RateLimitError) and error.retry_after_ms is not None:
            return float(error.retry_after_ms)
        return compute_delay_ms(attempt, self.policy, self._rng)

    def run(self, operation: Callable[[], T], *, on_retry: OnRetry | None = None) -> T:
        callback = on_retry or self.on_retry
        attempt = 0
        while True:
            try:
                return operation()
            except Exception as exc:
                attempt += 1
                if attempt > self.policy.max_retries or not is_retryable(exc, self.policy):
                    raise
                delay_ms = self.delay_for(exc, attempt)
                self.logger.warning(
                    "retry_scheduled",
                    attempt=attempt,
                    max_retries=self.policy.max_retries,
                    delay_ms=round(delay_ms, 1),
                    error=str(exc),
                )
                if callback is not None:
                    callback(exc, attempt, delay_ms)
                self._sleep(delay_ms / 1000)


def with_retry(operation: Callable[[], T], policy: RetryConfig | None = None, **kwargs) -> T:
    return RetryExecutor(policy, **kwargs).run(operation)


__all__ = [
    "RetryExecutor",
    "with_retry",
    "is_retryable",
    "compute_delay_ms",
    "TRANSIENT_MESSAGE_MARKERS",
]
