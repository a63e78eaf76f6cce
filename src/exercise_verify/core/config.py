"""Configuration models for exercise-verify.

Configuration lives in ``exercise-verify.yaml`` and is validated with frozen
Pydantic models. Relative paths resolve against the directory containing
the config file.

Usage:
    from exercise_verify.core.config import load_config

    config = load_config(Path("exercise-verify.yaml"))
    exercise = config.get_exercise("02-render-props-to-hooks")
    debounce = config.watch.debounce_seconds
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Self

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from exercise_verify.core.exceptions import ConfigError
from exercise_verify.core.types import Exercise

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "exercise-verify.yaml"


class ExerciseEntry(BaseModel):
    """One exercise the learner can run or watch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1, description="Exercise identifier, key of its rule set")
    file_path: Path = Field(description="Learner's working file")

    def to_exercise(self, base_dir: Path | None = None) -> Exercise:
        """Build the runtime Exercise, resolving a relative path against base_dir."""
        path = self.file_path
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return Exercise(id=self.id, file_path=path)


class TranspilerConfig(BaseModel):
    """Which transpiler produces the inspectable text.

    Attributes:
        kind: "passthrough" inspects the raw source; "command" runs an
            external compiler.
        command: Argument list for the external compiler; ``{file}`` is
            replaced with the exercise file path.
        output: Whether compiled text is the command's stdout or the
            original source (type-check only compilers).
        timeout_seconds: Optional limit for one transpiler invocation.

    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["passthrough", "command"] = "passthrough"
    command: list[str] = Field(default_factory=list)
    output: Literal["source", "stdout"] = "source"
    timeout_seconds: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def validate_command(self) -> Self:
        """Require a command when kind is "command"."""
        if self.kind == "command" and not self.command:
            raise ValueError("transpiler.command is required when transpiler.kind is 'command'")
        return self


class WatchConfig(BaseModel):
    """File watching and re-run behaviour."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    debounce_ms: int = Field(
        default=300,
        ge=0,
        le=60_000,
        description="Quiet period before a burst of changes triggers one run",
    )
    ignore_hidden: bool = Field(default=True, description="Ignore dot files")
    max_reestablish_attempts: int = Field(default=5, ge=0, le=100)
    reestablish_base_delay_seconds: float = Field(default=0.5, gt=0)
    reestablish_max_delay_seconds: float = Field(default=10.0, gt=0)

    @property
    def debounce_seconds(self) -> float:
        """Debounce window in seconds."""
        return self.debounce_ms / 1000.0


class Config(BaseModel):
    """Root configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rules_paths: list[Path] = Field(default_factory=lambda: [Path("rules")])
    exercises: list[ExerciseEntry] = Field(default_factory=list)
    transpiler: TranspilerConfig = Field(default_factory=TranspilerConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    base_dir: Path | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def validate_unique_exercises(self) -> Self:
        """Reject duplicate exercise ids."""
        seen: set[str] = set()
        for entry in self.exercises:
            if entry.id in seen:
                raise ValueError(f"Duplicate exercise id: {entry.id}")
            seen.add(entry.id)
        return self

    def resolve(self, path: Path) -> Path:
        """Resolve a config-relative path."""
        if self.base_dir is not None and not path.is_absolute():
            return self.base_dir / path
        return path

    def resolved_rules_paths(self) -> list[Path]:
        """Rule locations resolved against the config directory."""
        return [self.resolve(p) for p in self.rules_paths]

    def get_exercise(self, exercise_id: str) -> Exercise:
        """Look up an exercise by id.

        Raises:
            ConfigError: If no exercise has this id.

        """
        for entry in self.exercises:
            if entry.id == exercise_id:
                return entry.to_exercise(self.base_dir)
        known = ", ".join(e.id for e in self.exercises) or "none"
        raise ConfigError(f"Unknown exercise '{exercise_id}' (configured: {known})")

    def all_exercises(self) -> list[Exercise]:
        """All configured exercises, in declaration order."""
        return [entry.to_exercise(self.base_dir) for entry in self.exercises]


def load_config(path: Path) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        Validated Config with ``base_dir`` set to the file's directory.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or fails
            validation.

    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")

    try:
        config = Config.model_validate({**data, "base_dir": path.resolve().parent})
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}:\n{e}") from e

    logger.debug(
        "Loaded config %s: %d exercises, %d rule paths",
        path,
        len(config.exercises),
        len(config.rules_paths),
    )
    return config
