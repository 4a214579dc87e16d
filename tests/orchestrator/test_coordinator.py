from __future__ import annotations

from threading import Event
from typing import Iterator

import pytest

from leadscrape.engine import ThreadPoolManager
from leadscrape.errors import ConfigurationError, UpstreamHTTPError, ValidationError
from leadscrape.infra import InMemoryLeadRepository
from leadscrape.orchestrator import (
    IngestionCoordinator,
    IngestQuery,
    ProgressEvent,
    ProgressStatus,
)
from leadscrape.records import CandidateRecord, LeadSource, Trade
from leadscrape.sources import Location, SourceQuery


class FakeIntegration:
    """Serves one candidate list per page and counts page fetches."""

    def __init__(self, name: LeadSource, pages=None, terms=("term",), failures=None) -> None:
        self.name = name
        self.pages = pages or []
        self.terms = list(terms)
        self.failures = failures or {}
        self.fetches = 0
        self.queries: list[SourceQuery] = []
        self.closed = False

    def search_terms(self, trade: Trade) -> list[str]:
        return self.terms

    def scrape(self, query: SourceQuery) -> Iterator[CandidateRecord]:
        self.queries.append(query)
        if query.term in self.failures:
            raise self.failures[query.term]
        for page in self.pages:
            self.fetches += 1
            yield from page

    def test_connection(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


class FakeCatalog:
    def __init__(self, integrations: dict[str, FakeIntegration], broken=None) -> None:
        self.integrations = integrations
        self.broken = broken or {}
        self.created: list[str] = []

    def create(self, name: str) -> FakeIntegration:
        self.created.append(name)
        if name in self.broken:
            raise self.broken[name]
        if name not in self.integrations:
            raise ConfigurationError(f"Unknown source: {name}")
        return self.integrations[name]


def _query(sources=("Yelp",), categories=("Plumbing",), **overrides) -> IngestQuery:
    values = {
        "sources": list(sources),
        "categories": list(categories),
        "location": Location(city="White Plains", state="NY"),
        "max_results_per_source": 3,
    }
    values.update(overrides)
    return IngestQuery(**values)


@pytest.fixture
def repository() -> InMemoryLeadRepository:
    return InMemoryLeadRepository()


def test_budget_caps_fetching_and_duplicates_are_merged(make_candidate, repository) -> None:
    pages = [
        [make_candidate("Joes Plumbing", phone="914-555-0100")],
        [make_candidate("J.P. Services", phone="(914) 555-0100", email="joe@example.com")],
        [make_candidate("Zenith Roofing", phone="914-555-0199")],
        [make_candidate("Never Fetched")],
    ]
    yelp = FakeIntegration(LeadSource.YELP, pages=pages)
    coordinator = IngestionCoordinator(FakeCatalog({"Yelp": yelp}), repository)

    result = coordinator.run(_query(["Yelp"], categories=["Plumbing", "HVAC"]))

    assert (result.total_found, result.total_saved, result.total_duplicates) == (3, 2, 1)
    assert yelp.fetches == 3
    assert len(yelp.queries) == 1
    assert yelp.queries[0].max_results == 3
    assert yelp.closed
    joes = next(r for r in repository.list_active() if r.company_name == "Joes Plumbing")
    assert joes.email == "joe@example.com"
    assert result.as_dict()["by_source"]["Yelp"] == {"found": 3, "saved": 2, "duplicates": 1}


def test_failures_are_isolated_per_query_and_source(make_candidate, repository) -> None:
    yelp = FakeIntegration(
        LeadSource.YELP,
        pages=[[make_candidate("Joes Plumbing")]],
        terms=["broken", "working"],
        failures={"broken": UpstreamHTTPError("Yelp", 503, "Yelp responded with HTTP 503")},
    )
    places = FakeIntegration(
        LeadSource.GOOGLE_MAPS,
        pages=[[make_candidate("Zenith Roofing", source=LeadSource.GOOGLE_MAPS)]],
    )
    catalog = FakeCatalog({"Yelp": yelp, "Google Maps": places})

    result = IngestionCoordinator(catalog, repository).run(_query(["Yelp", "Missing", "Google Maps"]))

    assert [error.source for error in result.errors] == ["Yelp", "Missing"]
    assert "503" in result.errors[0].error
    assert result.by_source["Yelp"].saved == 1
    assert result.by_source["Missing"].found == 0
    assert result.by_source["Google Maps"].saved == 1
    assert result.total_saved == 2


def test_configuration_error_stops_only_that_source(make_candidate, repository) -> None:
    yelp = FakeIntegration(
        LeadSource.YELP,
        terms=["first", "second"],
        failures={"first": ConfigurationError("Yelp API key not configured", config_key="YELP_API_KEY")},
    )
    places = FakeIntegration(LeadSource.GOOGLE_MAPS, pages=[[make_candidate("Zenith Roofing")]])
    events: list[ProgressEvent] = []

    result = IngestionCoordinator(FakeCatalog({"Yelp": yelp, "Google Maps": places}), repository).run(
        _query(["Yelp", "Google Maps"], categories=["Plumbing", "Roofing"], on_progress=events.append)
    )

    assert [q.term for q in yelp.queries] == ["first"]
    assert yelp.closed
    assert len(result.errors) == 1
    assert result.total_saved == 1
    yelp_statuses = [e.status for e in events if e.source == "Yelp"]
    assert yelp_statuses == [ProgressStatus.STARTING, ProgressStatus.ERROR]


def test_source_that_fails_to_build_is_recorded(make_candidate, repository) -> None:
    places = FakeIntegration(LeadSource.GOOGLE_MAPS, pages=[[make_candidate("Zenith Roofing")]])
    catalog = FakeCatalog(
        {"Google Maps": places}, broken={"Acme Directory": ValueError("Unknown LeadSource: 'Acme Directory'")}
    )
    events: list[ProgressEvent] = []

    result = IngestionCoordinator(catalog, repository).run(
        _query(["Acme Directory", "Google Maps"], on_progress=events.append)
    )

    assert [error.source for error in result.errors] == ["Acme Directory"]
    assert "Acme Directory" in result.errors[0].error
    assert result.by_source["Google Maps"].saved == 1
    assert [e.status for e in events if e.source == "Acme Directory"] == [
        ProgressStatus.STARTING,
        ProgressStatus.ERROR,
    ]


def test_malformed_website_does_not_end_the_query(make_candidate, repository) -> None:
    yelp = FakeIntegration(
        LeadSource.YELP,
        pages=[[make_candidate("Good One", website="http://[broken"), make_candidate("Good Two Roofing")]],
    )

    result = IngestionCoordinator(FakeCatalog({"Yelp": yelp}), repository).run(_query())

    assert (result.total_found, result.total_saved) == (2, 2)
    assert result.errors == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"sources": []},
        {"categories": []},
        {"categories": ["Landscaping"]},
        {"location": Location()},
        {"max_results_per_source": 0},
    ],
)
def test_invalid_queries_raise_before_any_work(overrides, repository) -> None:
    catalog = FakeCatalog({"Yelp": FakeIntegration(LeadSource.YELP)})
    with pytest.raises(ValidationError):
        IngestionCoordinator(catalog, repository).run(_query(**overrides))
    assert catalog.created == []


def test_invalid_candidates_are_counted_but_not_saved(make_candidate, repository) -> None:
    yelp = FakeIntegration(
        LeadSource.YELP, pages=[[make_candidate("   "), make_candidate("Joes Plumbing", rating=9.0)]]
    )
    result = IngestionCoordinator(FakeCatalog({"Yelp": yelp}), repository).run(_query(["Yelp"]))

    assert result.total_found == 2
    assert result.total_saved == 0
    assert result.errors == []
    assert len(repository) == 0


def test_skip_deduplication_and_count_only_duplicates(make_candidate, repository) -> None:
    page = [make_candidate("Joes Plumbing"), make_candidate("Joes Plumbing", email="joe@example.com")]

    skipped = IngestionCoordinator(
        FakeCatalog({"Yelp": FakeIntegration(LeadSource.YELP, pages=[page])}), repository
    ).run(_query(["Yelp"], skip_deduplication=True))
    assert skipped.total_saved == 2

    fresh = InMemoryLeadRepository()
    counted = IngestionCoordinator(
        FakeCatalog({"Yelp": FakeIntegration(LeadSource.YELP, pages=[page])}), fresh
    ).run(_query(["Yelp"], merge_duplicates=False))
    assert (counted.total_saved, counted.total_duplicates) == (1, 1)
    assert fresh.list_active()[0].email is None


def test_progress_events_and_failing_callback(make_candidate, repository) -> None:
    events: list[ProgressEvent] = []

    def callback(event: ProgressEvent) -> None:
        events.append(event)
        raise RuntimeError("display went away")

    yelp = FakeIntegration(LeadSource.YELP, pages=[[make_candidate("Joes Plumbing")]])
    result = IngestionCoordinator(FakeCatalog({"Yelp": yelp}), repository).run(
        _query(["Yelp"], on_progress=callback)
    )

    assert result.total_saved == 1
    assert [e.status for e in events] == [
        ProgressStatus.STARTING,
        ProgressStatus.FETCHING,
        ProgressStatus.COMPLETE,
    ]
    assert events[1].trade is Trade.PLUMBING
    assert (events[-1].found, events[-1].saved) == (1, 1)


def test_cancel_event_stops_ingestion(make_candidate, repository) -> None:
    cancel = Event()

    def callback(event: ProgressEvent) -> None:
        if event.status is ProgressStatus.FETCHING:
            cancel.set()

    yelp = FakeIntegration(
        LeadSource.YELP, pages=[[make_candidate("One Plumbing")], [make_candidate("Two Roofing")]]
    )
    result = IngestionCoordinator(FakeCatalog({"Yelp": yelp}), repository).run(
        _query(["Yelp"], on_progress=callback, cancel_event=cancel)
    )

    assert result.total_found == 1
    assert yelp.fetches == 1


def test_sources_run_concurrently_on_the_ingest_pool(make_candidate, repository) -> None:
    pool = ThreadPoolManager(2)
    integrations = {
        "Yelp": FakeIntegration(LeadSource.YELP, pages=[[make_candidate("Joes Plumbing", phone="914-555-0100")]]),
        "Google Maps": FakeIntegration(
            LeadSource.GOOGLE_MAPS,
            pages=[[make_candidate("Joe's Plumbing LLC", phone="9145550100", source=LeadSource.GOOGLE_MAPS)]],
        ),
    }
    coordinator = IngestionCoordinator(
        FakeCatalog(integrations), repository, thread_pool=pool, max_concurrent_sources=2
    )
    try:
        result = coordinator.run(_query(["Yelp", "Google Maps"]))
    finally:
        pool.shutdown()

    assert list(result.by_source) == ["Yelp", "Google Maps"]
    assert (result.total_found, result.total_saved, result.total_duplicates) == (2, 1, 1)
    assert len(repository.list_active()) == 1
