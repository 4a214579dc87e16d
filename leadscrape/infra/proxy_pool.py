"""Proxy pool with round-robin rotation, cooldown and health tracking."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlsplit

import structlog

from ..config import ProxyPoolConfig

SUPPORTED_PROTOCOLS = ("http", "https", "socks5")


def detect_protocol(url: str) -> str:
    scheme = urlsplit(url).scheme.lower()
    if scheme.startswith("socks"):
        return "socks5"
    return scheme if scheme in SUPPORTED_PROTOCOLS else "http"


@dataclass(slots=True, eq=False)
class Proxy:
    url: str
    protocol: str = "http"
    last_used_at: float | None = None
    fail_count: int = 0
    success_count: int = 0

    @property
    def total(self) -> int:
        return self.fail_count + self.success_count

    @property
    def fail_rate(self) -> float:
        return self.fail_count / self.total if self.total else 0.0


class ProxyPool:
    """Circular proxy provider; unhealthy proxies are dropped automatically."""

    def __init__(
        self,
        proxies: Iterable[str] | None = None,
        file_path: Path | None = None,
        *,
        cooldown_ms: int = 1000,
        max_fail_rate: float = 0.5,
        min_samples: int = 5,
        auto_remove: bool = True,
        shuffle: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = Lock()
        self._index = 0
        self._shuffle = shuffle
        self._clock = clock
        self.cooldown_ms = cooldown_ms
        self.max_fail_rate = max_fail_rate
        self.min_samples = min_samples
        self.auto_remove = auto_remove
        self.logger = structlog.get_logger("leadscrape.proxy_pool")
        urls: List[str] = []
        if proxies:
            urls.extend(p.strip() for p in proxies if p.strip())
        if file_path and file_path.exists():
            lines = file_path.read_text(encoding="utf-8").splitlines()
            urls.extend(line.strip() for line in lines if line.strip() and not line.startswith("#"))
        self._proxies: List[Proxy] = self._build(urls)

    @classmethod
    def from_config(cls, config: ProxyPoolConfig, **kwargs) -> "ProxyPool":
        return cls(
            proxies=config.proxies,
            file_path=Path(config.source) if config.source else None,
            cooldown_ms=config.cooldown_ms,
            max_fail_rate=config.max_fail_rate,
            min_samples=config.min_samples,
            auto_remove=config.auto_remove,
            shuffle=config.shuffle,
            **kwargs,
        )

    def _build(self, urls: Iterable[str]) -> List[Proxy]:
        unique = list(dict.fromkeys(urls))
        if self._shuffle:
            random.shuffle(unique)
        return [Proxy(url=url, protocol=detect_protocol(url)) for url in unique]

    # ------------------------------------------------------------------
    @property
    def empty(self) -> bool:
        return not self._proxies

    def has_proxies(self) -> bool:
        with self._lock:
            return bool(self._proxies)

    def __len__(self) -> int:
        return len(self._proxies)

    def _available(self, proxy: Proxy, now: float) -> bool:
        if proxy.last_used_at is None:
            return True
        return (now - proxy.last_used_at) * 1000 >= self.cooldown_ms

    def next(self) -> Optional[Proxy]:
        """Next proxy out of cooldown in round-robin order, or ``None``."""

        with self._lock:
            count = len(self._proxies)
            if not count:
                return None
            now = self._clock()
            for offset in range(count):
                position = (self._index + offset) % count
                proxy = self._proxies[position]
                if self._available(proxy, now):
                    proxy.last_used_at = now
                    self._index = position + 1
                    return proxy
            return None

    def mark_success(self, proxy: Proxy) -> None:
        with self._lock:
            proxy.success_count += 1

    def mark_failure(self, proxy: Proxy) -> None:
        with self._lock:
            proxy.fail_count += 1
            if (
                self.auto_remove
                and proxy.total >= self.min_samples
                and proxy.fail_rate > self.max_fail_rate
                and proxy in self._proxies
            ):
                position = self._proxies.index(proxy)
                self._proxies.remove(proxy)
                if position < self._index:
                    self._index -= 1
                self.logger.warning(
                    "proxy_removed",
                    proxy=proxy.url,
                    fail_rate=round(proxy.fail_rate, 3),
                    samples=proxy.total,
                )

    def add_proxy(self, url: str) -> None:
        url = url.strip()
        if not url:
            return
        with self._lock:
            if any(p.url == url for p in self._proxies):
                return
            self._proxies.append(Proxy(url=url, protocol=detect_protocol(url)))

    def refresh(self, urls: Iterable[str]) -> None:
        with self._lock:
            self._proxies = self._build(u.strip() for u in urls if u.strip())
            self._index = 0

    def stats(self) -> dict[str, int]:
        """Counts of configured, healthy and degraded proxies."""

        with self._lock:
            degraded = sum(
                1 for p in self._proxies if p.total and p.fail_rate > self.max_fail_rate / 2
            )
            return {
                "total": len(self._proxies),
                "healthy": len(self._proxies) - degraded,
                "degraded": degraded,
            }


__all__ = ["Proxy", "ProxyPool", "detect_protocol"]
