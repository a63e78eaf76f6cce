"""Shared helpers for the exercise-verify CLI.

Exit codes, the shared rich console, logging setup and config loading
used by every command.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from exercise_verify.core.config import DEFAULT_CONFIG_FILENAME, Config, load_config
from exercise_verify.core.exceptions import ConfigError, RuleLibraryError
from exercise_verify.runner import ExerciseRunner

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

console = Console()


def _setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logging for a CLI invocation.

    Args:
        verbose: Log at DEBUG level.
        quiet: Log errors only. Ignored when verbose is set.

    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def _error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}")


def _warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]Warning:[/yellow] {escape(message)}")


def _success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {escape(message)}")


def _load_config(config_path: Path | None) -> Config:
    """Load configuration or exit with EXIT_CONFIG_ERROR.

    Args:
        config_path: Explicit config file, or None for
            ``exercise-verify.yaml`` in the current directory.

    """
    path = config_path or Path(DEFAULT_CONFIG_FILENAME)
    try:
        return load_config(path)
    except ConfigError as e:
        _error(f"Config error: {e}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None


def _build_runner(config: Config) -> ExerciseRunner:
    """Build a runner from config or exit with EXIT_CONFIG_ERROR on bad rules."""
    try:
        return ExerciseRunner.from_config(config)
    except RuleLibraryError as e:
        _error(f"Rule library error: {e}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None
