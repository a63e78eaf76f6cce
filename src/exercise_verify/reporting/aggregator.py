"""Run report aggregation.

Combines rule results, compilation errors and console output into one
ExerciseRunReport and derives its status. Status is never stored apart
from the data it is derived from.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace

from exercise_verify.core.types import (
    CompilationError,
    ExerciseRunReport,
    ExerciseStatus,
    FailureReason,
    RuleResult,
)

logger = logging.getLogger(__name__)

SKIPPED_MESSAGE = "Skipped: compilation must succeed before {name} can be checked"


def derive_status(
    tests: Sequence[RuleResult],
    compilation_errors: Sequence[CompilationError],
) -> ExerciseStatus:
    """Derive the status of a finished run.

    Compilation errors always fail the run. Without them the run is
    completed only when every test passed; an exercise with no tests is
    trivially completed.

    Args:
        tests: Rule results of the run.
        compilation_errors: Transpiler diagnostics of the run.

    Returns:
        COMPLETED or FAILED.

    """
    if compilation_errors:
        return ExerciseStatus.FAILED
    if all(t.passed for t in tests):
        return ExerciseStatus.COMPLETED
    return ExerciseStatus.FAILED


def skip_for_compilation(result: RuleResult) -> RuleResult:
    """Return a skipped copy of a result whose unit was missing."""
    if result.reason is not FailureReason.UNIT_MISSING:
        return result
    return replace(
        result,
        passed=False,
        skipped=True,
        message=SKIPPED_MESSAGE.format(name=result.name),
    )


class RunReportAggregator:
    """Builds ExerciseRunReport instances.

    Example:
        >>> aggregator = RunReportAggregator()
        >>> report = aggregator.aggregate("ex-1", results, (), (), run_token=3)
        >>> report.status
        <ExerciseStatus.COMPLETED: 'completed'>

    """

    def __repr__(self) -> str:
        """Return a string representation of the aggregator."""
        return "RunReportAggregator()"

    def aggregate(
        self,
        exercise_id: str,
        tests: Iterable[RuleResult],
        compilation_errors: Iterable[CompilationError] = (),
        console_output: Iterable[str] = (),
        run_token: int = 0,
    ) -> ExerciseRunReport:
        """Build the report of a finished run.

        When compilation errors are present, results that failed only
        because their unit could not be found are turned into skipped
        results: the missing unit is most likely a consequence of the
        broken build. Result order is preserved.

        Args:
            exercise_id: Exercise the run belongs to.
            tests: Rule results in declaration order.
            compilation_errors: Transpiler diagnostics.
            console_output: Captured console lines.
            run_token: Token the run was dispatched with.

        Returns:
            Finished ExerciseRunReport.

        """
        errors = tuple(compilation_errors)
        results = tuple(tests)
        if errors:
            results = tuple(skip_for_compilation(r) for r in results)

        report = ExerciseRunReport(
            exercise_id=exercise_id,
            status=derive_status(results, errors),
            tests=results,
            compilation_errors=errors,
            console_output=tuple(console_output),
            total_execution_time=sum(r.execution_time_ms for r in results),
            run_token=run_token,
        )
        logger.debug("Aggregated %r", report)
        return report

    def pending(self, exercise_id: str, run_token: int) -> ExerciseRunReport:
        """Build the placeholder report of a dispatched, unfinished run."""
        return ExerciseRunReport(
            exercise_id=exercise_id,
            status=ExerciseStatus.IN_PROGRESS,
            run_token=run_token,
        )

    def not_started(self, exercise_id: str) -> ExerciseRunReport:
        """Build the report of an exercise that has never been run."""
        return ExerciseRunReport(exercise_id=exercise_id, status=ExerciseStatus.NOT_STARTED)
