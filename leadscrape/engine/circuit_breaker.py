"""Circuit breaker with an explicit CLOSED / OPEN / HALF_OPEN state machine."""

from __future__ import annotations

import math
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable, Deque, TypeVar

import structlog

from ..config import CircuitBreakerConfig
from ..errors import CircuitOpenError, CircuitTimeoutError

T = TypeVar("T")

LATENCY_SAMPLE_SIZE = 1000


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(slots=True)
class CircuitStats:
    """Counters and latency percentiles (milliseconds) for one breaker."""

    name: str
    state: CircuitState
    successes: int = 0
    failures: int = 0
    rejects: int = 0
    timeouts: int = 0
    fallbacks: int = 0
    latency_mean: float = 0.0
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    last_transition_at: float | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        return payload


def _percentile(ordered: list[float], pct: float) -> float:
    if not ordered:
        return 0.0
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


class CircuitBreaker:
    """Trip after sustained failure, fail fast while open, probe to recover.

    Failures are judged over a rolling window of ``rolling_window_ms``; the
    circuit opens once the window holds at least ``volume_threshold`` calls
    and the failure percentage reaches ``error_threshold_percentage``.
    Rejections while open are counted separately and never feed the window.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        fallback: Callable[[Exception], Any] | None = None,
        executor: ThreadPoolExecutor | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.fallback = fallback
        self._executor = executor
        self._owns_executor = executor is None
        self._clock = clock
        self.logger = logger or structlog.get_logger("leadscrape.circuit_breaker").bind(circuit=name)
        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None
        self._last_transition_at: float | None = None
        self._window: Deque[tuple[float, bool]] = deque()
        self._half_open_inflight = 0
        self._latencies: Deque[float] = deque(maxlen=LATENCY_SAMPLE_SIZE)
        self._counts = {"successes": 0, "failures": 0, "rejects": 0, "timeouts": 0, "fallbacks": 0}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _transition(self, state: CircuitState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        self._last_transition_at = self._clock()
        if state is CircuitState.OPEN:
            self._opened_at = self._last_transition_at
        if state is CircuitState.CLOSED:
            self._window.clear()
        log = self.logger.warning if state is CircuitState.OPEN else self.logger.info
        log("circuit_state_change", previous=previous.value, state=state.value)

    def _maybe_half_open(self) -> None:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return
        if (self._clock() - self._opened_at) * 1000 >= self.config.reset_timeout_ms:
            self._transition(CircuitState.HALF_OPEN)

    def _prune(self, now: float) -> None:
        horizon = now - self.config.rolling_window_ms / 1000
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def _should_trip(self) -> bool:
        total = len(self._window)
        if total < self.config.volume_threshold:
            return False
        failures = sum(1 for _, ok in self._window if not ok)
        return failures * 100 / total >= self.config.error_threshold_percentage

    # ------------------------------------------------------------------
    # Admission and outcome bookkeeping
    # ------------------------------------------------------------------
    def _admit(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.OPEN:
                self._counts["rejects"] += 1
                return False
            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_inflight >= self.config.half_open_max_calls:
                    self._counts["rejects"] += 1
                    return False
                self._half_open_inflight += 1
            return True

    def _record(self, success: bool, latency: float, *, timed_out: bool = False) -> None:
        with self._lock:
            now = self._clock()
            self._latencies.append(latency * 1000)
            self._counts["successes" if success else "failures"] += 1
            if timed_out:
                self._counts["timeouts"] += 1
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_inflight = max(0, self._half_open_inflight - 1)
                self._transition(CircuitState.CLOSED if success else CircuitState.OPEN)
                return
            self._window.append((now, success))
            self._prune(now)
            if not success and self._state is CircuitState.CLOSED and self._should_trip():
                self._transition(CircuitState.OPEN)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``operation`` through the breaker.

        Raises ``CircuitOpenError`` without invoking ``operation`` while open,
        unless a fallback is configured, in which case its result is returned.
        """

        if not self._admit():
            error = CircuitOpenError(self.name)
            self.logger.debug("circuit_rejected", state=self._state.value)
            return self._fallback_or_raise(error)

        started = self._clock()
        try:
            result = self._invoke(operation, *args, **kwargs)
        except CircuitTimeoutError as exc:
            self._record(False, self._clock() - started, timed_out=True)
            self.logger.warning("circuit_call_timeout", timeout_ms=self.config.timeout_ms)
            return self._fallback_or_raise(exc)
        except Exception as exc:
            self._record(False, self._clock() - started)
            return self._fallback_or_raise(exc)
        self._record(True, self._clock() - started)
        return result

    def _invoke(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        timeout_ms = self.config.timeout_ms
        if not timeout_ms:
            return operation(*args, **kwargs)
        future = self._get_executor().submit(operation, *args, **kwargs)
        try:
            return future.result(timeout=timeout_ms / 1000)
        except FutureTimeout as exc:
            future.cancel()
            raise CircuitTimeoutError(self.name, timeout_ms) from exc

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=4, thread_name_prefix=f"breaker-{self.name}"
                )
            return self._executor

    def _fallback_or_raise(self, error: Exception) -> Any:
        if self.fallback is None:
            raise error
        with self._lock:
            self._counts["fallbacks"] += 1
        return self.fallback(error)

    # ------------------------------------------------------------------
    # Introspection and manual control
    # ------------------------------------------------------------------
    def stats(self) -> CircuitStats:
        with self._lock:
            self._maybe_half_open()
            ordered = sorted(self._latencies)
            mean = sum(ordered) / len(ordered) if ordered else 0.0
            return CircuitStats(
                name=self.name,
                state=self._state,
                latency_mean=round(mean, 3),
                latency_p50=round(_percentile(ordered, 50), 3),
                latency_p95=round(_percentile(ordered, 95), 3),
                latency_p99=round(_percentile(ordered, 99), 3),
                last_transition_at=self._last_transition_at,
                **self._counts,
            )

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._opened_at = None
            self._half_open_inflight = 0

    def force_open(self) -> None:
        with self._lock:
            self._transition(CircuitState.OPEN)
            self._opened_at = self._clock()

    def close(self) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


__all__ = ["CircuitBreaker", "CircuitState", "CircuitStats"]
