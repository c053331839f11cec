"""Milestone progress display for long running reconciliations."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

__all__ = ["MILESTONE_LABELS", "ProgressHandle", "progress_tracker"]

MILESTONE_LABELS = {
    "started": "Starting",
    "parse-source": "Parsed source",
    "parse-target": "Parsed target",
    "diff-complete": "Compared records",
    "persist-complete": "Stored exceptions",
    "completed": "Done",
}


@dataclass
class ProgressHandle:
    """Percent based view over a rich progress task."""

    _progress: Progress
    _task_id: TaskID
    _console: Console
    _finished: bool = False
    _failed: bool = False

    def milestone(self, name: str, percent: int) -> None:
        """Jump to *percent* and label the bar with the milestone."""

        self._progress.update(
            self._task_id,
            completed=percent,
            description=MILESTONE_LABELS.get(name, name),
        )

    def succeed(self, message: str) -> None:
        if not self._finished:
            self._progress.update(self._task_id, completed=100)
        self._finished = True
        self._console.print(f"[bold green]✔ {message}[/bold green]")

    def fail(self, message: str) -> None:
        self._failed = True
        self._console.print(f"[bold red]✖ {message}[/bold red]")


@contextmanager
def progress_tracker(
    title: str,
    *,
    task_description: str = "Starting",
    console: Optional[Console] = None,
) -> Iterator[ProgressHandle]:
    """Yield a :class:`ProgressHandle` counting from 0 to 100."""

    progress_console = console or Console()
    progress_console.rule(f"[bold cyan]{title}")

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=progress_console,
        transient=False,
    ) as progress:
        task_id = progress.add_task(task_description, total=100)
        handle = ProgressHandle(progress, task_id, progress_console)
        try:
            yield handle
        except Exception:  # pragma: no cover - re-raised for CLI exception handlers
            if not handle._failed:
                handle.fail(f"{title} failed.")
            raise
        finally:
            progress.stop()
