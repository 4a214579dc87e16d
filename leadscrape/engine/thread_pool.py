"""Named thread pools bounding concurrent work per purpose."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Dict


class ThreadPoolManager:
    """Hand out one executor per name, created on first use and shared after."""

    def __init__(self, default_workers: int = 8) -> None:
        self.default_workers = default_workers
        self._default_executor: ThreadPoolExecutor | None = None
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._lock = Lock()

    def get(self, name: str | None = None, max_workers: int | None = None) -> ThreadPoolExecutor:
        with self._lock:
            if name is None:
                if self._default_executor is None:
                    self._default_executor = ThreadPoolExecutor(
                        max_workers=self.default_workers, thread_name_prefix="leadscrape"
                    )
                return self._default_executor
            if name not in self._executors:
                self._executors[name] = ThreadPoolExecutor(
                    max_workers=max_workers or self.default_workers,
                    thread_name_prefix=f"leadscrape-{name}",
                )
            return self._executors[name]

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            executors = list(self._executors.values())
            if self._default_executor is not None:
                executors.append(self._default_executor)
            self._default_executor = None
            self._executors.clear()
        for executor in executors:
            executor.shutdown(wait=wait)


__all__ = ["ThreadPoolManager"]
