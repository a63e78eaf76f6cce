"""exercise-verify command line interface.

Commands:
    run       Run one exercise once and print its report.
    watch     Re-run exercises whenever their files change.
    locate    Show the body the locator extracts for a unit.
    rules     Inspect and scaffold rule files.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from exercise_verify.cli_utils import (
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    EXIT_SUCCESS,
    _build_runner,
    _error,
    _load_config,
    _setup_logging,
    _success,
    _warning,
    console,
)
from exercise_verify.core.exceptions import ConfigError, RuleLibraryError
from exercise_verify.core.types import ExerciseStatus
from exercise_verify.locator import CodeUnitLocator
from exercise_verify.reporting import ConsolePresenter, JsonPresenter, ResultPresenter
from exercise_verify.rules import RuleLibrary, scaffold_rule_file
from exercise_verify.watch import FileChangeCoordinator, WatchdogPrimitive

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="exercise-verify",
    help="Verify learner exercise files against declarative rules",
    no_args_is_help=True,
)

rules_app = typer.Typer(
    name="rules",
    help="Inspect and scaffold rule files",
    no_args_is_help=True,
)
app.add_typer(rules_app, name="rules")

CONFIG_HELP = "Path to exercise-verify.yaml (default: ./exercise-verify.yaml)"


@app.command("run")
def run_command(
    exercise_id: str = typer.Argument(..., help="Exercise to run"),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Run an exercise once and print its report.

    Exits 0 when every rule passes, 1 when the exercise fails.

    Examples:
        exercise-verify run 02-render-props-to-hooks
        exercise-verify run 02-render-props-to-hooks --json

    """
    _setup_logging(verbose=verbose, quiet=json_output)
    loaded = _load_config(config)
    try:
        exercise = loaded.get_exercise(exercise_id)
    except ConfigError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
    runner = _build_runner(loaded)

    report = asyncio.run(runner.run_exercise(exercise))

    presenter: ResultPresenter = JsonPresenter() if json_output else ConsolePresenter(console)
    presenter.present(report)
    if report.status is not ExerciseStatus.COMPLETED:
        raise typer.Exit(code=EXIT_ERROR)


@app.command("watch")
def watch_command(
    exercise_ids: list[str] | None = typer.Argument(
        None, help="Exercises to watch (default: all configured)"
    ),
    initial: bool = typer.Option(
        True, "--initial/--no-initial", help="Run each exercise once on start"
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Watch exercise files and re-run them on every change.

    Press Ctrl+C to stop.

    Examples:
        exercise-verify watch
        exercise-verify watch 01-intro 02-render-props-to-hooks -v

    """
    _setup_logging(verbose=verbose, quiet=False)
    loaded = _load_config(config)
    try:
        exercises = (
            [loaded.get_exercise(eid) for eid in exercise_ids]
            if exercise_ids
            else loaded.all_exercises()
        )
    except ConfigError as e:
        _error(str(e))
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
    if not exercises:
        _error("No exercises configured")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    runner = _build_runner(loaded)
    coordinator = FileChangeCoordinator(runner, WatchdogPrimitive(), loaded.watch)
    presenter = ConsolePresenter(console)

    async def _watch() -> None:
        for exercise in exercises:
            coordinator.watch_exercise(exercise, presenter.present)
        await coordinator.start_watching()
        if initial:
            for exercise in exercises:
                coordinator.trigger(exercise.id)
        console.print(
            f"Watching {len(exercises)} exercise(s), press Ctrl+C to stop", style="dim"
        )
        try:
            await asyncio.Event().wait()
        finally:
            await coordinator.stop_watching()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("Stopped", style="dim")


@app.command("locate")
def locate_command(
    file: Path = typer.Argument(..., help="Source file to search"),
    name: str = typer.Argument(..., help="Function, const or class name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Print the body the locator extracts for a unit.

    Useful when writing rules: the printed text is exactly what the rule's
    markers are matched against.
    """
    _setup_logging(verbose=verbose, quiet=False)
    try:
        source = file.read_text(encoding="utf-8")
    except OSError as e:
        _error(f"Cannot read {file}: {e}")
        raise typer.Exit(code=EXIT_ERROR) from None

    unit = CodeUnitLocator().locate(source, name)
    if unit is None:
        _error(f"{name} not found in {file}")
        raise typer.Exit(code=EXIT_ERROR)

    console.print(
        f"[cyan]{escape(unit.name)}[/cyan] ({unit.kind.value}) "
        f"offsets {unit.start_offset}-{unit.end_offset}"
    )
    console.print(unit.text, markup=False, highlight=False, emoji=False, soft_wrap=True)


@rules_app.command("list")
def rules_list(
    config: Path | None = typer.Option(None, "--config", "-c", help=CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """List exercises and their rule counts."""
    _setup_logging(verbose=verbose, quiet=False)
    loaded = _load_config(config)
    try:
        library = RuleLibrary.load(loaded.resolved_rules_paths())
    except RuleLibraryError as e:
        _error(f"Rule library error: {e}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None

    stats = library.stats()
    configured = {e.id for e in loaded.exercises}
    table = Table(title="Rule Library", show_header=True)
    table.add_column("Exercise", style="cyan")
    table.add_column("Rules", justify="right")
    table.add_column("Configured")
    for exercise_id in sorted(configured | set(stats.rules_per_exercise)):
        table.add_row(
            escape(exercise_id),
            str(stats.rules_per_exercise.get(exercise_id, 0)),
            "yes" if exercise_id in configured else "[dim]no[/dim]",
        )
    console.print(table)
    console.print(f"{stats.total_rules} rules across {stats.total_exercises} exercises")

    missing = sorted(configured - set(stats.rules_per_exercise))
    for exercise_id in missing:
        _warning(f"Exercise {exercise_id} has no rules")


@rules_app.command("scaffold")
def rules_scaffold(
    exercise_id: str = typer.Argument(..., help="Exercise to scaffold rules for"),
    units: list[str] = typer.Option(..., "--unit", "-u", help="Unit name (repeatable)"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write to this file instead of stdout"
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing output file"),
) -> None:
    """Generate a starter rule file.

    Examples:
        exercise-verify rules scaffold 02-render-props-to-hooks -u Toggle -u App
        exercise-verify rules scaffold 03-context -u ThemeProvider -o rules/03-context.yaml

    """
    text = scaffold_rule_file(exercise_id, units)
    if output is None:
        console.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True, end="")
        raise typer.Exit(code=EXIT_SUCCESS)

    if output.exists() and not force:
        _error(f"{output} already exists (use --force to overwrite)")
        raise typer.Exit(code=EXIT_ERROR)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    _success(f"Rule file written: {output}")


def main() -> None:
    """Entry point for the exercise-verify console script."""
    app()
