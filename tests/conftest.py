"""Shared fixtures: isolated home directory, fake clock and config builders."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest

from leadscrape.config import (
    ClientMode,
    ConfigLocator,
    ConfigRepository,
    GlobalConfig,
    RateLimitConfig,
    RetryConfig,
    SourceConfig,
)
from leadscrape.engine import ResilienceRegistry, ThreadPoolManager
from leadscrape.records import CandidateRecord, LeadSource, Trade


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("LEADSCRAPE_HOME", str(tmp_path))
    monkeypatch.delenv("YELP_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_PLACES_API_KEY", raising=False)
    return tmp_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(
        database_path=tmp_path / "leads.db",
        thread_pool_workers=2,
        default_max_results_per_source=10,
    )


@pytest.fixture
def sample_source_config() -> Callable[..., SourceConfig]:
    def _builder(**overrides: Any) -> SourceConfig:
        base: dict[str, Any] = {
            "name": LeadSource.YELP.value,
            "mode": ClientMode.API,
            "base_url": "https://api.example.test",
            "api_key": "test-key",
            "rate_limit": RateLimitConfig(max_requests=100, window_ms=1000),
            "retry": RetryConfig(max_retries=2, base_delay_ms=10, max_delay_ms=100, jitter_percent=0),
        }
        base.update(overrides)
        return SourceConfig(**base)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


@pytest.fixture
def registry(clock: FakeClock) -> Iterable[ResilienceRegistry]:
    registry = ResilienceRegistry(
        thread_pool=ThreadPoolManager(2), clock=clock, sleep=clock.sleep
    )
    yield registry
    registry.shutdown()


@pytest.fixture
def make_candidate() -> Callable[..., CandidateRecord]:
    def _builder(company_name: str = "Acme Plumbing", **overrides: Any) -> CandidateRecord:
        base: dict[str, Any] = {
            "company_name": company_name,
            "trade": Trade.PLUMBING,
            "source": LeadSource.YELP,
        }
        base.update(overrides)
        return CandidateRecord(**base)

    return _builder


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]):
    """Transport factory serving every egress from ``handler``."""

    def _factory(proxy):
        return httpx.MockTransport(handler)

    return _factory


@pytest.fixture
def transport_factory() -> Callable[..., Any]:
    return mock_transport
