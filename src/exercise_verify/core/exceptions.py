"""Exception hierarchy for exercise-verify.

All exceptions raised by the engine derive from ExerciseVerifyError so hosts
can catch the whole family at one boundary. Grading outcomes (compilation
failures, unmet rules) are never exceptions; they are carried as data in
ExerciseRunReport.
"""

from __future__ import annotations

from pathlib import Path


class ExerciseVerifyError(Exception):
    """Base exception for exercise-verify."""

    pass


class ConfigError(ExerciseVerifyError):
    """Configuration could not be loaded or failed validation."""

    pass


class RuleLibraryError(ExerciseVerifyError):
    """Rule file has invalid structure or content.

    Attributes:
        file_path: Rule file that caused the error, if known.

    """

    def __init__(self, message: str, file_path: Path | None = None) -> None:
        """Initialize RuleLibraryError with context.

        Args:
            message: Human-readable error message.
            file_path: Rule file that caused the error.

        """
        if file_path is not None:
            message = f"{file_path}: {message}"
        super().__init__(message)
        self.file_path = file_path


class RuleEvaluationError(ExerciseVerifyError):
    """A single rule could not be evaluated.

    Raised inside the evaluator for authoring bugs (invalid regex marker,
    diagnostic step naming an unknown marker) and contained there at
    single-rule granularity.

    Attributes:
        rule_id: Identifier of the failing rule.

    """

    def __init__(self, message: str, rule_id: str) -> None:
        """Initialize RuleEvaluationError.

        Args:
            message: Human-readable error message.
            rule_id: Identifier of the failing rule.

        """
        super().__init__(message)
        self.rule_id = rule_id


class TranspilerError(ExerciseVerifyError):
    """The transpiler collaborator could not run at all.

    Distinct from compilation errors, which are reported as data: this
    covers a missing executable, a timeout, or an OS-level failure.
    """

    pass


class WatchError(ExerciseVerifyError):
    """The underlying file notification channel failed."""

    pass
