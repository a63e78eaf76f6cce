"""Core module for exercise-verify types, configuration and errors."""

from exercise_verify.core.config import (
    Config,
    ExerciseEntry,
    TranspilerConfig,
    WatchConfig,
    load_config,
)
from exercise_verify.core.exceptions import (
    ConfigError,
    ExerciseVerifyError,
    RuleEvaluationError,
    RuleLibraryError,
    TranspilerError,
    WatchError,
)
from exercise_verify.core.types import (
    WHOLE_FILE,
    CheckKind,
    CompilationError,
    DiagnosticStep,
    Exercise,
    ExerciseRunReport,
    ExerciseStatus,
    FailureReason,
    Marker,
    Rule,
    RuleResult,
    RunSummary,
    SourceUnit,
    TestResult,
    TranspileResult,
    UnitKind,
    deserialize_report,
    serialize_report,
)

__all__ = [
    # Configuration
    "Config",
    "ExerciseEntry",
    "TranspilerConfig",
    "WatchConfig",
    "load_config",
    # Exceptions
    "ExerciseVerifyError",
    "ConfigError",
    "RuleLibraryError",
    "RuleEvaluationError",
    "TranspilerError",
    "WatchError",
    # Types
    "WHOLE_FILE",
    "CheckKind",
    "CompilationError",
    "DiagnosticStep",
    "Exercise",
    "ExerciseRunReport",
    "ExerciseStatus",
    "FailureReason",
    "Marker",
    "Rule",
    "RuleResult",
    "RunSummary",
    "SourceUnit",
    "TestResult",
    "TranspileResult",
    "UnitKind",
    # Serialization
    "serialize_report",
    "deserialize_report",
]
