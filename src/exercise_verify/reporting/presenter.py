"""Result presenters.

A presenter turns an ExerciseRunReport into user-visible output. The
engine never formats output itself; hosts pick a presenter (or several)
and hand it each published report.
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import IO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from exercise_verify.core.timing import format_duration_ms
from exercise_verify.core.types import ExerciseRunReport, ExerciseStatus, serialize_report

logger = logging.getLogger(__name__)

_STATUS_STYLES: dict[ExerciseStatus, str] = {
    ExerciseStatus.NOT_STARTED: "dim",
    ExerciseStatus.IN_PROGRESS: "yellow",
    ExerciseStatus.COMPLETED: "bold green",
    ExerciseStatus.FAILED: "bold red",
}


class ResultPresenter(ABC):
    """Abstract base class for report presenters.

    Implementations must not raise for well-formed reports; output
    failures are the host's concern.
    """

    @abstractmethod
    def present(self, report: ExerciseRunReport) -> None:
        """Render a report.

        Args:
            report: The report to render.

        """


class ConsolePresenter(ResultPresenter):
    """Renders reports as a rich table.

    Compilation errors are listed before rule results since they explain
    most of the failures below them.
    """

    def __init__(self, console: Console | None = None) -> None:
        """Initialize presenter.

        Args:
            console: Console to print to, defaults to a new stdout console.

        """
        self.console = console or Console()

    def __repr__(self) -> str:
        """Return a string representation of the presenter."""
        return "ConsolePresenter()"

    def present(self, report: ExerciseRunReport) -> None:
        """Print the report to the console."""
        style = _STATUS_STYLES[report.status]
        self.console.print(
            f"[bold]{escape(report.exercise_id)}[/bold]: [{style}]{report.status.value}[/{style}]"
        )

        if report.compilation_errors:
            self.console.print("[bold red]Compilation errors:[/bold red]")
            for error in report.compilation_errors:
                self.console.print(f"  [red]✗[/red] {escape(str(error))}", highlight=False)

        if report.tests:
            self.console.print(self._build_table(report))

        for line in report.console_output:
            self.console.print(f"[dim]{escape(line)}[/dim]", highlight=False)

        s = report.summary
        self.console.print(
            f"{s.passed}/{s.total} passed, {s.failed} failed, {s.skipped} skipped "
            f"in {format_duration_ms(report.total_execution_time)}"
        )

    def _build_table(self, report: ExerciseRunReport) -> Table:
        table = Table(show_header=True)
        table.add_column("", width=2)
        table.add_column("Check", style="cyan")
        table.add_column("Message")
        table.add_column("Time", justify="right", style="dim")

        for result in report.tests:
            if result.passed:
                mark = "[green]✓[/green]"
            elif result.skipped:
                mark = "[yellow]-[/yellow]"
            else:
                mark = "[red]✗[/red]"
            table.add_row(
                mark,
                escape(result.name),
                escape(result.message or ""),
                format_duration_ms(result.execution_time_ms),
            )
        return table


class JsonPresenter(ResultPresenter):
    """Writes each report as one JSON document."""

    def __init__(self, stream: IO[str] | None = None, indent: int | None = 2) -> None:
        """Initialize presenter.

        Args:
            stream: Text stream to write to, defaults to the current sys.stdout.
            indent: JSON indentation, None for compact single-line output.

        """
        self.stream = stream
        self.indent = indent

    def __repr__(self) -> str:
        """Return a string representation of the presenter."""
        return f"JsonPresenter(indent={self.indent})"

    def render(self, report: ExerciseRunReport) -> str:
        """Serialize a report to a JSON string."""
        return json.dumps(serialize_report(report), indent=self.indent, default=str)

    def present(self, report: ExerciseRunReport) -> None:
        """Write the serialized report followed by a newline."""
        stream = self.stream or sys.stdout
        stream.write(self.render(report) + "\n")
        stream.flush()
