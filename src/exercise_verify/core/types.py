"""Core data model for exercise-verify.

Runtime values are frozen, slotted dataclasses: a SourceUnit, RuleResult or
ExerciseRunReport is never mutated once created. Helpers at the bottom of
the module convert reports to and from plain dictionaries for JSON output.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

# applies_to value for rules that inspect the whole compiled file
WHOLE_FILE = "*"

REGEX_PREFIX = "regex:"


class ExerciseStatus(StrEnum):
    """Lifecycle status of an exercise run."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class UnitKind(StrEnum):
    """Kind of declaration a SourceUnit was extracted from."""

    FUNCTION = "function"
    ASSIGNMENT = "assignment"
    CLASS = "class"
    FILE = "file"


class FailureReason(StrEnum):
    """Why a rule did not pass.

    UNIT_MISSING is a separate category from CHECK_UNMET: the learner has
    not declared the unit yet, versus declared it but left it incomplete.
    """

    UNIT_MISSING = "unit_missing"
    CHECK_UNMET = "check_unmet"
    INTERNAL_ERROR = "internal_error"


class CheckKind(StrEnum):
    """Kind of check a DiagnosticStep refers to."""

    REQUIRED = "required"
    FORBIDDEN = "forbidden"
    MIN_LENGTH = "min_length"
    PREDICATE = "predicate"


@dataclass(frozen=True, slots=True)
class Exercise:
    """An exercise the learner edits.

    Attributes:
        id: Exercise identifier, also the key of its rule set.
        file_path: Path to the learner's working file.

    """

    id: str
    file_path: Path


@dataclass(frozen=True, slots=True)
class SourceUnit:
    """Body text of one named declaration.

    ``text`` excludes the enclosing braces, so
    ``source[start_offset:end_offset] == text``.
    """

    name: str
    kind: UnitKind
    text: str
    start_offset: int
    end_offset: int

    def __repr__(self) -> str:
        """Return a string representation of the unit."""
        return (
            f"SourceUnit(name={self.name!r}, kind={self.kind.value}, "
            f"span={self.start_offset}-{self.end_offset}, chars={len(self.text)})"
        )


@dataclass(frozen=True, slots=True)
class Marker:
    """A text check with any-of alternatives.

    Each pattern is an exact substring, or a regular expression when
    prefixed with ``regex:``. The marker is present when any alternative
    occurs at least ``min_count`` times.
    """

    patterns: tuple[str, ...]
    min_count: int = 1

    def __post_init__(self) -> None:
        """Validate marker invariants."""
        if not self.patterns:
            raise ValueError("Marker needs at least one pattern")
        if self.min_count < 1:
            raise ValueError(f"Marker min_count must be >= 1, got {self.min_count}")

    @property
    def label(self) -> str:
        """Human-readable name of the marker (first pattern, prefix stripped)."""
        first = self.patterns[0]
        if first.startswith(REGEX_PREFIX):
            return first[len(REGEX_PREFIX) :]
        return first

    @classmethod
    def of(cls, *patterns: str, min_count: int = 1) -> Marker:
        """Build a marker from positional patterns."""
        return cls(patterns=tuple(patterns), min_count=min_count)


@dataclass(frozen=True, slots=True)
class DiagnosticStep:
    """One entry of a rule's diagnostic priority list.

    Attributes:
        check: Which kind of check this step inspects.
        message: Message reported when the check is unmet.
        marker: Marker label for required/forbidden checks.

    """

    check: CheckKind
    message: str
    marker: str | None = None


@dataclass(frozen=True, slots=True)
class Rule:
    """Declarative check against one source unit or the whole file.

    Attributes:
        id: Unique identifier within the exercise.
        applies_to: Unit name, or WHOLE_FILE.
        name: Display name (defaults to id).
        required_markers: Markers that must be present.
        forbidden_markers: Markers that must be absent (e.g. placeholders).
        diagnostic_order: Checks in the order their messages take priority.
        min_length: Minimum length of the unit text, if set.
        ignore_case: Match exact markers case-insensitively.
        missing_message: Message used when the unit is not found.
        fallback_message: Message used when no diagnostic step applies.
        predicate: Optional extra check on the unit text.

    """

    id: str
    applies_to: str
    name: str = ""
    required_markers: tuple[Marker, ...] = ()
    forbidden_markers: tuple[Marker, ...] = ()
    diagnostic_order: tuple[DiagnosticStep, ...] = ()
    min_length: int | None = None
    ignore_case: bool = False
    missing_message: str | None = None
    fallback_message: str | None = None
    predicate: Callable[[str], bool] | None = field(default=None, compare=False)

    @property
    def display_name(self) -> str:
        """Name shown to the learner."""
        return self.name or self.id

    @property
    def is_whole_file(self) -> bool:
        """Whether this rule inspects the whole compiled file."""
        return self.applies_to == WHOLE_FILE


@dataclass(frozen=True, slots=True)
class TestResult:
    """Presenter-facing shape of one rule outcome."""

    __test__ = False  # Tell pytest this is not a test class

    name: str
    passed: bool
    execution_time: float
    error: str | None = None
    expected: Any = None
    actual: Any = None


@dataclass(frozen=True, slots=True)
class RuleResult:
    """Outcome of evaluating one rule in one run."""

    rule_id: str
    name: str
    passed: bool
    message: str | None = None
    execution_time_ms: float = 0.0
    skipped: bool = False
    reason: FailureReason | None = None
    expected: Any = None
    actual: Any = None

    @property
    def failed(self) -> bool:
        """Whether this result counts as a failure (skipped never does)."""
        return not self.passed and not self.skipped

    def to_test_result(self) -> TestResult:
        """Convert to the presenter-facing TestResult shape."""
        return TestResult(
            name=self.name,
            passed=self.passed,
            execution_time=self.execution_time_ms,
            error=self.message if not self.passed else None,
            expected=self.expected,
            actual=self.actual,
        )


@dataclass(frozen=True, slots=True)
class CompilationError:
    """A diagnostic reported by the transpiler."""

    message: str
    file: str | None = None
    line: int | None = None
    column: int | None = None
    code: str | None = None

    def __str__(self) -> str:
        """Format as ``file:line:column [code] message``."""
        location = ":".join(
            str(part) for part in (self.file, self.line, self.column) if part is not None
        )
        code = f"[{self.code}] " if self.code else ""
        return f"{location} {code}{self.message}".strip()


@dataclass(frozen=True, slots=True)
class TranspileResult:
    """Output of the transpiler collaborator."""

    compiled_text: str
    compilation_errors: tuple[CompilationError, ...] = ()
    console_output: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Counts of a run's rule outcomes."""

    total: int
    passed: int
    failed: int
    skipped: int


@dataclass(frozen=True, slots=True)
class ExerciseRunReport:
    """The externally visible result of one run.

    ``status`` is derived by the aggregator from ``tests`` and
    ``compilation_errors``; it is never set independently.
    """

    exercise_id: str
    status: ExerciseStatus
    tests: tuple[RuleResult, ...] = ()
    compilation_errors: tuple[CompilationError, ...] = ()
    console_output: tuple[str, ...] = ()
    total_execution_time: float = 0.0
    run_token: int = 0

    @property
    def summary(self) -> RunSummary:
        """Summary counts; skipped results are not failures."""
        passed = sum(1 for t in self.tests if t.passed)
        skipped = sum(1 for t in self.tests if t.skipped)
        return RunSummary(
            total=len(self.tests),
            passed=passed,
            failed=len(self.tests) - passed - skipped,
            skipped=skipped,
        )

    def test_results(self) -> list[TestResult]:
        """Return the tests in TestResult shape, in declaration order."""
        return [t.to_test_result() for t in self.tests]

    def __repr__(self) -> str:
        """Return a string representation of the report."""
        s = self.summary
        return (
            f"ExerciseRunReport(exercise={self.exercise_id!r}, status={self.status.value}, "
            f"token={self.run_token}, passed={s.passed}/{s.total}, "
            f"errors={len(self.compilation_errors)})"
        )


# =============================================================================
# Serialization
# =============================================================================


def serialize_compilation_error(error: CompilationError) -> dict[str, Any]:
    """Serialize CompilationError to a dictionary."""
    return {
        "message": error.message,
        "file": error.file,
        "line": error.line,
        "column": error.column,
        "code": error.code,
    }


def deserialize_compilation_error(data: dict[str, Any]) -> CompilationError:
    """Deserialize a dictionary to CompilationError."""
    return CompilationError(
        message=data["message"],
        file=data.get("file"),
        line=data.get("line"),
        column=data.get("column"),
        code=data.get("code"),
    )


def serialize_rule_result(result: RuleResult) -> dict[str, Any]:
    """Serialize RuleResult to a dictionary."""
    return {
        "rule_id": result.rule_id,
        "name": result.name,
        "passed": result.passed,
        "message": result.message,
        "execution_time_ms": result.execution_time_ms,
        "skipped": result.skipped,
        "reason": result.reason.value if result.reason else None,
        "expected": result.expected,
        "actual": result.actual,
    }


def deserialize_rule_result(data: dict[str, Any]) -> RuleResult:
    """Deserialize a dictionary to RuleResult."""
    reason = data.get("reason")
    return RuleResult(
        rule_id=data["rule_id"],
        name=data.get("name", data["rule_id"]),
        passed=data["passed"],
        message=data.get("message"),
        execution_time_ms=data.get("execution_time_ms", 0.0),
        skipped=data.get("skipped", False),
        reason=FailureReason(reason) if reason else None,
        expected=data.get("expected"),
        actual=data.get("actual"),
    )


def serialize_report(report: ExerciseRunReport) -> dict[str, Any]:
    """Serialize ExerciseRunReport to a dictionary.

    The TestResult view and summary counts are included for consumers that
    do not know about RuleResult.
    """
    summary = report.summary
    return {
        "exercise_id": report.exercise_id,
        "status": report.status.value,
        "run_token": report.run_token,
        "total_execution_time": report.total_execution_time,
        "tests": [serialize_rule_result(t) for t in report.tests],
        "test_results": [
            {
                "name": tr.name,
                "passed": tr.passed,
                "error": tr.error,
                "expected": tr.expected,
                "actual": tr.actual,
                "execution_time": tr.execution_time,
            }
            for tr in report.test_results()
        ],
        "compilation_errors": [serialize_compilation_error(e) for e in report.compilation_errors],
        "console_output": list(report.console_output),
        "summary": {
            "total": summary.total,
            "passed": summary.passed,
            "failed": summary.failed,
            "skipped": summary.skipped,
        },
    }


def deserialize_report(data: dict[str, Any]) -> ExerciseRunReport:
    """Deserialize a dictionary to ExerciseRunReport."""
    return ExerciseRunReport(
        exercise_id=data["exercise_id"],
        status=ExerciseStatus(data["status"]),
        tests=tuple(deserialize_rule_result(t) for t in data.get("tests", [])),
        compilation_errors=tuple(
            deserialize_compilation_error(e) for e in data.get("compilation_errors", [])
        ),
        console_output=tuple(data.get("console_output", [])),
        total_execution_time=data.get("total_execution_time", 0.0),
        run_token=data.get("run_token", 0),
    )
