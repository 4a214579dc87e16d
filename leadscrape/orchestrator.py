"""Ingestion coordinator wiring sources, deduplication, storage and progress."""

from __future__ import annotations

from concurrent.futures import as_completed
from dataclasses import asdict, dataclass, field
from enum import Enum
from threading import Event, Lock
from typing import Any, Callable, Iterable

import structlog

from .engine import DedupAction, DeduplicationEngine, ThreadPoolManager
from .errors import ConfigurationError, ValidationError
from .infra import LeadRepository
from .records import CandidateRecord, Trade
from .sources import Location, SourceCatalog, SourceIntegration, SourceQuery

INGEST_POOL = "ingest"


class ProgressStatus(str, Enum):
    STARTING = "starting"
    FETCHING = "fetching"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Rolling counts for one source, emitted as ingestion advances."""

    source: str
    status: ProgressStatus
    found: int = 0
    saved: int = 0
    duplicates: int = 0
    error: str | None = None
    trade: Trade | None = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(slots=True)
class IngestQuery:
    sources: list[str]
    categories: list[Trade | str]
    location: Location
    max_results_per_source: int = 100
    skip_deduplication: bool = False
    merge_duplicates: bool = True
    on_progress: ProgressCallback | None = None
    cancel_event: Event | None = None

    def trades(self) -> list[Trade]:
        """Parsed categories; raises ``ValidationError`` on the first unknown one."""

        parsed: list[Trade] = []
        for category in self.categories:
            try:
                trade = Trade.parse(category)
            except ValueError as exc:
                raise ValidationError(str(exc), field="categories") from exc
            if trade not in parsed:
                parsed.append(trade)
        return parsed

    def validate(self) -> list[Trade]:
        if not self.sources:
            raise ValidationError("At least one source is required", field="sources")
        if not self.categories:
            raise ValidationError("At least one category is required", field="categories")
        if self.location is None or self.location.is_empty():
            raise ValidationError("A city, county, state or zip code is required", field="location")
        if self.max_results_per_source <= 0:
            raise ValidationError(
                "max_results_per_source must be positive", field="max_results_per_source"
            )
        return self.trades()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(slots=True)
class SourceTally:
    found: int = 0
    saved: int = 0
    duplicates: int = 0


@dataclass(frozen=True, slots=True)
class SourceError:
    source: str
    error: str


@dataclass(slots=True)
class IngestResult:
    total_found: int = 0
    total_saved: int = 0
    total_duplicates: int = 0
    by_source: dict[str, SourceTally] = field(default_factory=dict)
    errors: list[SourceError] = field(default_factory=list)

    def add(self, source: str, tally: SourceTally, errors: Iterable[SourceError]) -> None:
        self.by_source[source] = tally
        self.total_found += tally.found
        self.total_saved += tally.saved
        self.total_duplicates += tally.duplicates
        self.errors.extend(errors)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class IngestionCoordinator:
    """Drive integrations over (trade x search term) and persist what is new.

    Sources run one after another unless ``max_concurrent_sources`` is above
    one, in which case they share the ``ingest`` pool. Deduplication and
    insertion form one locked critical section so two near-simultaneous
    candidates for the same business cannot both be judged new.
    """

    def __init__(
        self,
        catalog: SourceCatalog,
        repository: LeadRepository,
        *,
        dedup_engine: DeduplicationEngine | None = None,
        thread_pool: ThreadPoolManager | None = None,
        max_concurrent_sources: int = 1,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.catalog = catalog
        self.repository = repository
        self.dedup_engine = dedup_engine or DeduplicationEngine(repository)
        self.thread_pool = thread_pool
        self.max_concurrent_sources = max(1, max_concurrent_sources)
        self.logger = logger or structlog.get_logger("leadscrape.orchestrator")
        self._accept_lock = Lock()

    # ------------------------------------------------------------------
    def run(self, query: IngestQuery) -> IngestResult:
        """Ingest every requested source; only a malformed query raises."""

        trades = query.validate()
        sources = list(dict.fromkeys(query.sources))
        self.logger.info(
            "ingest_started",
            sources=sources,
            trades=[trade.value for trade in trades],
            location=query.location.describe(),
            max_results=query.max_results_per_source,
        )
        result = IngestResult()
        if self.max_concurrent_sources > 1 and len(sources) > 1:
            if self.thread_pool is None:
                self.thread_pool = ThreadPoolManager(self.max_concurrent_sources)
            executor = self.thread_pool.get(INGEST_POOL, self.max_concurrent_sources)
            futures = {
                executor.submit(self._run_source, name, trades, query): name for name in sources
            }
            outcomes = {futures[future]: future.result() for future in as_completed(futures)}
            for name in sources:
                result.add(name, *outcomes[name])
        else:
            for name in sources:
                result.add(name, *self._run_source(name, trades, query))
        self.logger.info(
            "ingest_finished",
            found=result.total_found,
            saved=result.total_saved,
            duplicates=result.total_duplicates,
            errors=len(result.errors),
        )
        return result

    def _run_source(
        self, name: str, trades: list[Trade], query: IngestQuery
    ) -> tuple[SourceTally, list[SourceError]]:
        tally = SourceTally()
        errors: list[SourceError] = []
        log = self.logger.bind(source=name)
        self._emit(query, ProgressEvent(name, ProgressStatus.STARTING))
        try:
            integration = self.catalog.create(name)
        except Exception as exc:
            log.error("source_unavailable", error=str(exc))
            errors.append(SourceError(name, str(exc)))
            self._emit(query, self._event(name, ProgressStatus.ERROR, tally, error=str(exc)))
            return tally, errors

        try:
            for trade in trades:
                if self._budget_spent(tally, query):
                    break
                for term in integration.search_terms(trade):
                    if self._budget_spent(tally, query):
                        break
                    try:
                        self._run_query(integration, name, trade, term, tally, query)
                    except ConfigurationError as exc:
                        log.error("source_misconfigured", error=str(exc))
                        errors.append(SourceError(name, str(exc)))
                        self._emit(
                            query, self._event(name, ProgressStatus.ERROR, tally, trade, str(exc))
                        )
                        return tally, errors
                    except Exception as exc:
                        log.warning("query_failed", trade=trade.value, term=term, error=str(exc))
                        errors.append(SourceError(name, str(exc)))
                        self._emit(
                            query, self._event(name, ProgressStatus.ERROR, tally, trade, str(exc))
                        )
        finally:
            integration.close()

        log.info("source_finished", found=tally.found, saved=tally.saved, duplicates=tally.duplicates)
        self._emit(query, self._event(name, ProgressStatus.COMPLETE, tally))
        return tally, errors

    def _run_query(
        self,
        integration: SourceIntegration,
        name: str,
        trade: Trade,
        term: str,
        tally: SourceTally,
        query: IngestQuery,
    ) -> None:
        remaining = query.max_results_per_source - tally.found
        stream = integration.scrape(SourceQuery(trade, term, query.location, remaining))
        try:
            for candidate in stream:
                tally.found += 1
                self._accept(candidate, tally, query)
                self._emit(query, self._event(name, ProgressStatus.FETCHING, tally, trade))
                if self._budget_spent(tally, query):
                    break
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    def _accept(self, candidate: CandidateRecord, tally: SourceTally, query: IngestQuery) -> None:
        try:
            candidate.validate()
        except ValidationError as exc:
            self.logger.info(
                "candidate_dropped",
                source=candidate.source.value,
                company=candidate.company_name,
                field=exc.field,
                reason=str(exc),
            )
            return
        with self._accept_lock:
            if query.skip_deduplication:
                self.repository.create(candidate)
                tally.saved += 1
                return
            decision = self.dedup_engine.decide(candidate, merge=query.merge_duplicates)
            if decision.action is DedupAction.NEW:
                self.repository.create(candidate)
                tally.saved += 1
                return
            tally.duplicates += 1
            if decision.action is DedupAction.MERGE and decision.match is not None:
                self.repository.update(decision.match.matched_record.id, decision.changes)

    # ------------------------------------------------------------------
    @staticmethod
    def _budget_spent(tally: SourceTally, query: IngestQuery) -> bool:
        return tally.found >= query.max_results_per_source or query.cancelled

    @staticmethod
    def _event(
        name: str,
        status: ProgressStatus,
        tally: SourceTally,
        trade: Trade | None = None,
        error: str | None = None,
    ) -> ProgressEvent:
        return ProgressEvent(
            source=name,
            status=status,
            found=tally.found,
            saved=tally.saved,
            duplicates=tally.duplicates,
            error=error,
            trade=trade,
        )

    def _emit(self, query: IngestQuery, event: ProgressEvent) -> None:
        if query.on_progress is None:
            return
        try:
            query.on_progress(event)
        except Exception as exc:
            self.logger.warning("progress_callback_failed", status=event.status.value, error=str(exc))


__all__ = [
    "IngestionCoordinator",
    "IngestQuery",
    "IngestResult",
    "ProgressEvent",
    "ProgressStatus",
    "SourceError",
    "SourceTally",
]
