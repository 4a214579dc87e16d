"""Rich progress rendering for ingestion runs."""

from __future__ import annotations

from threading import Lock

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..orchestrator import ProgressEvent, ProgressStatus


class IngestProgress:
    """One progress row per source, driven by coordinator progress events.

    Usable as the ``on_progress`` callback and as a context manager. Events
    may arrive from several worker threads at once.
    """

    def __init__(
        self,
        budget: int,
        enabled: bool = True,
        console: Console | None = None,
    ) -> None:
        self.budget = budget
        self.console = console or Console()
        self.enabled = enabled and self.console.is_terminal
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[source]:<14}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            TextColumn("[green]+{task.fields[saved]:>3}", justify="right"),
            TextColumn("[yellow]={task.fields[duplicates]:>3}", justify="right"),
            TextColumn("[red]!{task.fields[errors]:>2}", justify="right"),
            TextColumn("[dim]{task.fields[status]}", justify="left"),
            console=self.console,
            transient=True,
            refresh_per_second=12,
            expand=True,
            disable=not self.enabled,
        )
        self._tasks: dict[str, TaskID] = {}
        self._errors: dict[str, int] = {}
        self._lock = Lock()
        self._entered = False

    def __enter__(self) -> "IngestProgress":
        if self.enabled and not self._entered:
            try:
                self._progress.__enter__()
                self._entered = True
            except LiveError:
                self.enabled = False
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._entered:
            self._progress.__exit__(exc_type, exc, tb)
            self._entered = False

    def __call__(self, event: ProgressEvent) -> None:
        with self._lock:
            task_id = self._tasks.get(event.source)
            if task_id is None:
                task_id = self._progress.add_task(
                    event.source,
                    total=self.budget,
                    source=event.source,
                    saved=0,
                    duplicates=0,
                    errors=0,
                    status="waiting",
                )
                self._tasks[event.source] = task_id
            if event.status is ProgressStatus.ERROR:
                self._errors[event.source] = self._errors.get(event.source, 0) + 1
            status = event.status.value
            if event.trade is not None and event.status is ProgressStatus.FETCHING:
                status = f"{status} {event.trade.value}"
            completed = self.budget if event.status is ProgressStatus.COMPLETE else event.found
            self._progress.update(
                task_id,
                completed=completed,
                saved=event.saved,
                duplicates=event.duplicates,
                errors=self._errors.get(event.source, 0),
                status=status,
            )

    def error_count(self, source: str) -> int:
        return self._errors.get(source, 0)


__all__ = ["IngestProgress"]
