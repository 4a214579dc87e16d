"""Typer CLI entrypoint for LeadScrape."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, SourceConfig
from .engine import DeduplicationEngine, ResilienceRegistry
from .errors import ConfigurationError, ValidationError
from .infra import LeadRepository, SQLiteLeadRepository, SQLiteManager
from .logging_conf import available_source_logs, configure_logging, log_path, source_logger, tail_log
from .orchestrator import IngestionCoordinator, IngestQuery, IngestResult
from .records import Trade
from .sources import Location, SourceCatalog
from .ui import IngestProgress

app = typer.Typer(
    help="LeadScrape command line tools",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Inspect log files",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    registry: ResilienceRegistry
    catalog: SourceCatalog
    coordinator: IngestionCoordinator
    leads: LeadRepository
    storage: SQLiteManager


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    registry = ResilienceRegistry.from_config(global_config)
    storage = SQLiteManager()
    leads = SQLiteLeadRepository(storage, repository.database_path())
    catalog = SourceCatalog(global_config, registry, logger_factory=source_logger)
    coordinator = IngestionCoordinator(
        catalog,
        leads,
        dedup_engine=DeduplicationEngine(leads, fuzzy_threshold=global_config.fuzzy_match_threshold),
        thread_pool=registry.thread_pool,
        max_concurrent_sources=global_config.max_concurrent_sources,
    )
    return AppState(
        repository=repository,
        registry=registry,
        catalog=catalog,
        coordinator=coordinator,
        leads=leads,
        storage=storage,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _progress_default_enabled() -> bool:
    return bool(getattr(sys.stdout, "isatty", lambda: False)())


def _credential_status(state: AppState, source: SourceConfig) -> str:
    if not source.requires_credentials:
        return "n/a"
    try:
        state.repository.resolve_credential(source)
    except ConfigurationError:
        return "missing"
    return "configured"


def _render_sources_table(state: AppState, sources: Sequence[SourceConfig]) -> Table:
    table = Table(title=f"Sources · {len(sources)} configured", box=box.SIMPLE_HEAD)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Mode", style="magenta")
    table.add_column("Enabled", style="green")
    table.add_column("Credentials", style="yellow")
    table.add_column("Rate limit", justify="right")
    for source in sources:
        table.add_row(
            source.name,
            source.mode.value,
            "yes" if source.enabled else "no",
            _credential_status(state, source),
            f"{source.rate_limit.max_requests}/{source.rate_limit.window_ms}ms",
        )
    return table


def _render_result_table(result: IngestResult) -> Table:
    table = Table(title="Ingestion results", box=box.SIMPLE_HEAD)
    table.add_column("Source", style="cyan")
    table.add_column("Found", justify="right")
    table.add_column("Saved", style="green", justify="right")
    table.add_column("Duplicates", style="yellow", justify="right")
    for name, tally in result.by_source.items():
        table.add_row(name, str(tally.found), str(tally.saved), str(tally.duplicates))
    table.add_row(
        "total",
        str(result.total_found),
        str(result.total_saved),
        str(result.total_duplicates),
        style="bold",
    )
    return table


app.add_typer(log_app, name="log", help="View log files")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True),
) -> None:
    ctx.obj = build_state(verbose)


@app.command("ingest", help="Pull leads from one or more sources into the lead store.")
def ingest(
    ctx: typer.Context,
    sources: Optional[list[str]] = typer.Option(
        None, "--source", "-s", help="Source name; repeat for several. Defaults to all enabled."
    ),
    trades: Optional[list[str]] = typer.Option(
        None, "--trade", "-t", help="Trade to search for; repeat for several."
    ),
    city: Optional[str] = typer.Option(None, "--city"),
    county: Optional[str] = typer.Option(None, "--county"),
    state_code: Optional[str] = typer.Option(None, "--state"),
    zip_code: Optional[str] = typer.Option(None, "--zip"),
    max_results: Optional[int] = typer.Option(
        None, "--max-results", help="Upper bound on candidates per source."
    ),
    skip_dedup: bool = typer.Option(False, "--skip-dedup", is_flag=True),
    no_merge: bool = typer.Option(
        False, "--no-merge", help="Count duplicates without merging them.", is_flag=True
    ),
    quiet: bool = typer.Option(False, "--quiet", help="Only print a one-line summary.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    global_config = state.repository.load_global_config()
    budget = max_results if max_results is not None else global_config.default_max_results_per_source
    query = IngestQuery(
        sources=list(sources or state.catalog.available()),
        categories=list(trades or [trade.value for trade in Trade if trade is not Trade.UNKNOWN]),
        location=Location(city=city, county=county, state=state_code, zip_code=zip_code),
        max_results_per_source=budget,
        skip_deduplication=skip_dedup,
        merge_duplicates=not no_merge,
    )
    show_progress = global_config.enable_progress_bar and not quiet and _progress_default_enabled()
    progress = IngestProgress(budget, enabled=show_progress, console=console)
    query.on_progress = progress
    try:
        with progress:
            result = state.coordinator.run(query)
    except ValidationError as exc:
        console.print(f"Invalid request: {exc}", style="red")
        raise typer.Exit(code=2)
    finally:
        state.registry.shutdown()

    if quiet:
        console.print(
            f"found {result.total_found}, saved {result.total_saved}, "
            f"duplicates {result.total_duplicates}, errors {len(result.errors)}"
        )
    else:
        console.print(_render_result_table(result))
        for error in result.errors:
            console.print(f"[red]{error.source}[/red]: {error.error}")
    if result.errors and not result.total_found:
        raise typer.Exit(code=1)


@app.command("sources", help="List configured sources and their credential status.")
def list_sources(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    console.print(_render_sources_table(state, state.repository.list_sources()))


@app.command("test-connection", help="Make one cheap authenticated request to a source.")
def test_connection(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Source name, e.g. yelp or google-maps."),
) -> None:
    state = _get_state(ctx)
    try:
        integration = state.catalog.create(name)
    except ConfigurationError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    try:
        ok = integration.test_connection()
    finally:
        integration.close()
        state.registry.shutdown()
    if not ok:
        console.print(f"{name}: connection failed, see logs for details.", style="red")
        raise typer.Exit(code=1)
    console.print(f"{name}: connection ok", style="green")


@app.command("stats", help="Show stored lead counts by status.")
def stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    counts = state.leads.count_by_status()
    table = Table(title="Stored leads", box=box.SIMPLE_HEAD)
    table.add_column("Status", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for status, count in sorted(counts.items()):
        table.add_row(status, str(count))
    table.add_row("total", str(sum(counts.values())), style="bold")
    console.print(table)


@log_app.command("list", help="List per-source log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    if not logs:
        console.print("No source logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the most recent lines of a log.")
def log_show(
    name: Optional[str] = typer.Option(None, "--source", help="Source name; global log when empty."),
    tail: int = typer.Option(100, "--tail", help="Number of lines to show."),
) -> None:
    lines = tail_log(log_path(name), tail)
    if not lines:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"{name or 'leadscrape'} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()


__all__ = ["app", "build_state", "AppState", "cli"]
