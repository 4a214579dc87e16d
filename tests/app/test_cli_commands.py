from __future__ import annotations

from types import SimpleNamespace

from typer.testing import CliRunner

from leadscrape.app import AppState, app
from leadscrape.config import ClientMode, GlobalConfig, SourceConfig, resolve_credential
from leadscrape.errors import ConfigurationError, ValidationError
from leadscrape.orchestrator import IngestQuery, IngestResult, SourceError, SourceTally


class StubCoordinator:
    def __init__(self, result: IngestResult | Exception) -> None:
        self.result = result
        self.queries: list[IngestQuery] = []

    def run(self, query: IngestQuery) -> IngestResult:
        self.queries.append(query)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class StubCatalog:
    def __init__(self, connection_ok: bool = True) -> None:
        self.connection_ok = connection_ok
        self.closed: list[str] = []

    def available(self) -> list[str]:
        return ["Yelp", "Google Maps"]

    def create(self, name: str):
        if name not in ("yelp", "google-maps"):
            raise ConfigurationError(f"Unknown source: {name}")
        return SimpleNamespace(
            test_connection=lambda: self.connection_ok,
            close=lambda: self.closed.append(name),
        )


def make_state(result=None, connection_ok=True, sources=None) -> AppState:
    config = GlobalConfig(default_max_results_per_source=25, enable_progress_bar=False)
    shutdowns: list[bool] = []
    repository = SimpleNamespace(
        load_global_config=lambda: config,
        list_sources=lambda: sources if sources is not None else list(config.sources.values()),
        resolve_credential=resolve_credential,
    )
    return AppState(
        repository=repository,
        registry=SimpleNamespace(shutdown=lambda: shutdowns.append(True), shutdowns=shutdowns),
        catalog=StubCatalog(connection_ok),
        coordinator=StubCoordinator(result or IngestResult()),
        leads=SimpleNamespace(count_by_status=lambda: {"New": 4, "Duplicate": 1}),
        storage=SimpleNamespace(),
    )


def _result() -> IngestResult:
    result = IngestResult()
    result.add("Yelp", SourceTally(found=3, saved=2, duplicates=1), [])
    result.add("Google Maps", SourceTally(), [SourceError("Google Maps", "API key not configured")])
    return result


def test_cli_ingest_builds_query_and_prints_results(monkeypatch) -> None:
    state = make_state(_result())
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: state)

    outcome = CliRunner().invoke(
        app,
        ["ingest", "-s", "yelp", "-t", "plumbing", "-t", "hvac", "--city", "Yonkers", "--state", "NY"],
    )

    assert outcome.exit_code == 0, outcome.stdout
    query = state.coordinator.queries[0]
    assert query.sources == ["yelp"]
    assert query.categories == ["plumbing", "hvac"]
    assert query.location.describe() == "Yonkers, NY"
    assert query.max_results_per_source == 25
    assert query.merge_duplicates is True
    assert "Ingestion results" in outcome.stdout
    assert "API key not configured" in outcome.stdout
    assert state.registry.shutdowns == [True]


def test_cli_ingest_quiet_defaults_to_all_sources(monkeypatch) -> None:
    state = make_state(_result())
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: state)

    outcome = CliRunner().invoke(
        app, ["ingest", "--zip", "10701", "--max-results", "5", "--no-merge", "--skip-dedup", "--quiet"]
    )

    assert outcome.exit_code == 0, outcome.stdout
    assert "found 3, saved 2, duplicates 1, errors 1" in outcome.stdout
    query = state.coordinator.queries[0]
    assert query.sources == ["Yelp", "Google Maps"]
    assert "Unknown" not in query.categories
    assert len(query.categories) == 5
    assert query.max_results_per_source == 5
    assert query.skip_deduplication is True
    assert query.merge_duplicates is False


def test_cli_ingest_rejects_invalid_request(monkeypatch) -> None:
    state = make_state(ValidationError("A city, county, state or zip code is required", field="location"))
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: state)

    outcome = CliRunner().invoke(app, ["ingest", "-s", "yelp"])

    assert outcome.exit_code == 2
    assert "Invalid request" in outcome.stdout
    assert state.registry.shutdowns == [True]


def test_cli_ingest_fails_when_every_source_errors(monkeypatch) -> None:
    result = IngestResult()
    result.add("Yelp", SourceTally(), [SourceError("Yelp", "circuit open")])
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: make_state(result))

    outcome = CliRunner().invoke(app, ["ingest", "--city", "Yonkers", "--quiet"])

    assert outcome.exit_code == 1


def test_cli_sources_lists_credential_status(monkeypatch) -> None:
    monkeypatch.setenv("YELP_API_KEY", "secret")
    sources = [
        SourceConfig(name="Yelp", api_key_env="YELP_API_KEY"),
        SourceConfig(name="Google Maps", api_key_env="GOOGLE_PLACES_API_KEY"),
        SourceConfig(name="Angi", mode=ClientMode.SCRAPING),
    ]
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: make_state(sources=sources))

    outcome = CliRunner().invoke(app, ["sources"])

    assert outcome.exit_code == 0, outcome.stdout
    lines = outcome.stdout.splitlines()
    assert any("Yelp" in line and "configured" in line for line in lines)
    assert any("Google Maps" in line and "missing" in line for line in lines)
    assert any("Angi" in line and "n/a" in line for line in lines)


def test_cli_test_connection(monkeypatch) -> None:
    healthy = make_state()
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: healthy)
    runner = CliRunner()

    ok = runner.invoke(app, ["test-connection", "yelp"])
    assert ok.exit_code == 0, ok.stdout
    assert "yelp: connection ok" in ok.stdout
    assert healthy.catalog.closed == ["yelp"]

    unknown = runner.invoke(app, ["test-connection", "angi"])
    assert unknown.exit_code == 1
    assert "Unknown source" in unknown.stdout

    failing = make_state(connection_ok=False)
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: failing)
    failed = runner.invoke(app, ["test-connection", "google-maps"])
    assert failed.exit_code == 1
    assert "connection failed" in failed.stdout


def test_cli_stats(monkeypatch) -> None:
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: make_state())

    outcome = CliRunner().invoke(app, ["stats"])

    assert outcome.exit_code == 0, outcome.stdout
    assert "Stored leads" in outcome.stdout
    assert "Duplicate" in outcome.stdout


def test_cli_log_show_and_list(monkeypatch, isolated_home) -> None:
    monkeypatch.setattr("leadscrape.app.build_state", lambda verbose: make_state())
    sources_dir = isolated_home / "logs" / "sources"
    sources_dir.mkdir(parents=True)
    (sources_dir / "yelp.log").write_text(
        "".join(f'{{"event": "line {i}"}}\n' for i in range(5)), encoding="utf-8"
    )
    runner = CliRunner()

    shown = runner.invoke(app, ["log", "show", "--source", "Yelp", "--tail", "2"])
    assert shown.exit_code == 0, shown.stdout
    assert "line 4" in shown.stdout
    assert "line 2" not in shown.stdout

    listed = runner.invoke(app, ["log", "list"])
    assert listed.exit_code == 0, listed.stdout
    assert "yelp.log" in listed.stdout

    empty = runner.invoke(app, ["log", "show"])
    assert "No log entries yet." in empty.stdout
