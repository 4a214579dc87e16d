"""Shared building blocks for source integrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Iterator, Protocol, TypeVar

import structlog

from ..config import ClientMode, SourceConfig
from ..engine.circuit_breaker import CircuitBreaker
from ..engine.client import ResilientClient, TransportFactory, create_api_client, create_scraping_client
from ..engine.registry import ResilienceRegistry
from ..engine.retry import RetryExecutor
from ..records import CandidateRecord, LeadSource, Trade

T = TypeVar("T")

DEFAULT_LOCATION = "Westchester County, NY"


@dataclass(frozen=True, slots=True)
class Location:
    city: str | None = None
    county: str | None = None
    state: str | None = None
    zip_code: str | None = None

    def is_empty(self) -> bool:
        return not any(
            part and part.strip() for part in (self.city, self.county, self.state, self.zip_code)
        )

    def describe(self, default: str = DEFAULT_LOCATION) -> str:
        parts = [p.strip() for p in (self.city, self.county, self.state, self.zip_code) if p and p.strip()]
        return ", ".join(parts) or default


@dataclass(frozen=True, slots=True)
class SourceQuery:
    """One search: a trade's search term in a location, with a result budget."""

    trade: Trade
    term: str
    location: Location
    max_results: int | None = None


class SourceIntegration(Protocol):
    """What the coordinator needs from a provider."""

    name: LeadSource

    def search_terms(self, trade: Trade) -> list[str]:
        """Search terms (or category strings) to query for ``trade``."""

    def scrape(self, query: SourceQuery) -> Iterator[CandidateRecord]:
        """Lazily yield candidates, fetching a page only when the previous one is consumed."""

    def test_connection(self) -> bool:
        """Cheap authenticated request; ``False`` on any failure."""

    def close(self) -> None:
        ...


@dataclass
class IntegrationKit:
    """Client, breaker and retry policy wired for one source."""

    config: SourceConfig
    client: ResilientClient
    breaker: CircuitBreaker
    retry: RetryExecutor
    logger: Any = field(default=None)

    def fetch(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` behind the breaker, retrying transient failures."""

        return self.retry.run(lambda: self.breaker.call(operation))

    def close(self) -> None:
        self.client.close()


def build_kit(
    config: SourceConfig,
    registry: ResilienceRegistry,
    *,
    operation: str = "search",
    headers: dict[str, str] | None = None,
    transport_factory: TransportFactory | None = None,
    logger: Any = None,
) -> IntegrationKit:
    """Compose the resilience stack for ``config`` from the shared registry."""

    logger = logger or structlog.get_logger("leadscrape.sources").bind(source=config.name)
    bucket = registry.rate_limiter(config.name, config.rate_limit)
    client_kwargs: dict[str, Any] = {
        "base_url": config.base_url,
        "headers": headers,
        "timeout": config.request_timeout_ms / 1000,
        "logger": logger,
    }
    if transport_factory is not None:
        client_kwargs["transport_factory"] = transport_factory
    if config.mode is ClientMode.SCRAPING:
        client = create_scraping_client(
            config.name, bucket, registry.proxy_pool, registry.ua_pool, **client_kwargs
        )
    else:
        client = create_api_client(config.name, bucket, **client_kwargs)
    return IntegrationKit(
        config=config,
        client=client,
        breaker=registry.breaker(config.name, operation, config.circuit_breaker),
        retry=RetryExecutor(config.retry, logger=logger),
        logger=logger,
    )


@dataclass(slots=True)
class Page:
    """One fetched page; ``next_cursor`` of ``None`` ends pagination.

    ``records`` holds candidates, or raw items when ``paginate`` is given a
    ``transform``.
    """

    records: list[Any] = field(default_factory=list)
    next_cursor: Any = None


def paginate(
    kit: IntegrationKit,
    fetch_page: Callable[[Any], Page],
    *,
    first_cursor: Any = None,
    max_results: int | None = None,
    label: str = "",
    transform: Callable[[Any], CandidateRecord | None] | None = None,
) -> Iterator[CandidateRecord]:
    """Yield records page by page, stopping at the cursor end or ``max_results``.

    The generator is suspended between pages, so a consumer that stops
    iterating never triggers another fetch. Fetch errors are logged and
    propagate, ending this sequence only. ``transform`` runs on the
    consumer's thread after the fetch returns; items it maps to ``None`` are
    skipped and do not count towards ``max_results``.
    """

    cursor = first_cursor
    pages = 0
    yielded = 0
    while True:
        try:
            page = kit.fetch(partial(fetch_page, cursor))
        except Exception as exc:
            kit.logger.error("page_fetch_failed", query=label, page=pages + 1, error=str(exc))
            raise
        pages += 1
        for item in page.records:
            record = transform(item) if transform is not None else item
            if record is None:
                continue
            yield record
            yielded += 1
            if max_results is not None and yielded >= max_results:
                kit.logger.debug("query_budget_reached", query=label, pages=pages, yielded=yielded)
                return
        if page.next_cursor is None:
            break
        cursor = page.next_cursor
    kit.logger.debug("query_exhausted", query=label, pages=pages, yielded=yielded)


__all__ = [
    "Location",
    "SourceQuery",
    "SourceIntegration",
    "IntegrationKit",
    "Page",
    "build_kit",
    "paginate",
    "DEFAULT_LOCATION",
]
