"""One-shot exercise runs.

ExerciseRunner wires the pipeline together: read the learner's file,
transpile it, locate the units the rules target, evaluate the rules and
aggregate a report. It never raises for grading conditions; a run that
cannot complete still yields a failed report.
"""

from __future__ import annotations

import logging
from pathlib import Path

from exercise_verify.core.config import Config
from exercise_verify.core.exceptions import TranspilerError
from exercise_verify.core.types import (
    WHOLE_FILE,
    CompilationError,
    Exercise,
    ExerciseRunReport,
    SourceUnit,
    UnitKind,
)
from exercise_verify.locator import CodeUnitLocator
from exercise_verify.reporting import RunReportAggregator
from exercise_verify.rules import RuleEvaluator, RuleLibrary
from exercise_verify.transpiler import CommandTranspiler, PassthroughTranspiler, Transpiler

logger = logging.getLogger(__name__)


def whole_file_unit(compiled_text: str) -> SourceUnit | None:
    """Build the synthetic unit whole-file rules are evaluated against."""
    if not compiled_text:
        return None
    return SourceUnit(
        name=WHOLE_FILE,
        kind=UnitKind.FILE,
        text=compiled_text,
        start_offset=0,
        end_offset=len(compiled_text),
    )


def create_transpiler(config: Config) -> Transpiler:
    """Create the transpiler selected by configuration."""
    tc = config.transpiler
    if tc.kind == "command":
        return CommandTranspiler(
            tc.command,
            output=tc.output,
            timeout_seconds=tc.timeout_seconds,
            cwd=config.base_dir,
        )
    return PassthroughTranspiler()


class ExerciseRunner:
    """Runs the verification pipeline for one exercise at a time.

    Example:
        >>> runner = ExerciseRunner(RuleLibrary.load([Path("rules")]))
        >>> report = await runner.run_exercise(exercise)
        >>> report.status
        <ExerciseStatus.COMPLETED: 'completed'>

    """

    def __init__(
        self,
        library: RuleLibrary,
        transpiler: Transpiler | None = None,
        locator: CodeUnitLocator | None = None,
        evaluator: RuleEvaluator | None = None,
        aggregator: RunReportAggregator | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            library: Rules keyed by exercise id.
            transpiler: Transpiler to use, passthrough by default.
            locator: Unit locator.
            evaluator: Rule evaluator.
            aggregator: Report aggregator.

        """
        self.library = library
        self.transpiler = transpiler or PassthroughTranspiler()
        self.locator = locator or CodeUnitLocator()
        self.evaluator = evaluator or RuleEvaluator()
        self.aggregator = aggregator or RunReportAggregator()

    def __repr__(self) -> str:
        """Return a string representation of the runner."""
        return f"ExerciseRunner(library={self.library!r}, transpiler={self.transpiler.name})"

    @classmethod
    def from_config(cls, config: Config) -> ExerciseRunner:
        """Build a runner from configuration.

        Raises:
            RuleLibraryError: If a rule file is invalid.

        """
        library = RuleLibrary.load(config.resolved_rules_paths())
        return cls(library, transpiler=create_transpiler(config))

    async def run_exercise(self, exercise: Exercise, run_token: int = 0) -> ExerciseRunReport:
        """Run every rule of an exercise against its current file content.

        Args:
            exercise: Exercise to run.
            run_token: Token stamped on the report (used by watchers to
                discard stale runs).

        Returns:
            Finished ExerciseRunReport. An unreadable file, a transpiler that
            cannot run, or an unexpected error yields a failed report
            carrying one CompilationError.

        """
        try:
            return await self._run(exercise, run_token)
        except TranspilerError as e:
            logger.warning("Transpiler failed for %s: %s", exercise.id, e)
            return self._error_report(exercise, run_token, str(e), code="transpiler")
        except OSError as e:
            logger.warning("Cannot read %s: %s", exercise.file_path, e)
            return self._error_report(
                exercise, run_token, f"Cannot read exercise file: {e}", code="io"
            )
        except Exception as e:
            logger.exception("Unexpected error running %s", exercise.id)
            return self._error_report(
                exercise, run_token, f"Unexpected error: {type(e).__name__}: {e}", code="internal"
            )

    async def _run(self, exercise: Exercise, run_token: int) -> ExerciseRunReport:
        rules = self.library.get_rules(exercise.id)
        if not rules:
            logger.warning("No rules registered for exercise %s", exercise.id)

        source_text = Path(exercise.file_path).read_text(encoding="utf-8")
        transpiled = await self.transpiler.transpile(source_text, exercise.file_path)
        compiled = transpiled.compiled_text

        names = [r.applies_to for r in rules if not r.is_whole_file]
        units = self.locator.locate_all(compiled, names)
        if any(r.is_whole_file for r in rules):
            units[WHOLE_FILE] = whole_file_unit(compiled)

        results = self.evaluator.evaluate(units, rules)
        report = self.aggregator.aggregate(
            exercise.id,
            results,
            transpiled.compilation_errors,
            transpiled.console_output,
            run_token=run_token,
        )
        logger.debug("Run finished: %r", report)
        return report

    def _error_report(
        self, exercise: Exercise, run_token: int, message: str, code: str
    ) -> ExerciseRunReport:
        error = CompilationError(message=message, file=str(exercise.file_path), code=code)
        return self.aggregator.aggregate(exercise.id, (), (error,), run_token=run_token)
