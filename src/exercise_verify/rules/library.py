"""Rule library for exercise-verify.

This module provides the RuleLibrary class for loading, storing and
retrieving per-exercise rule sets from YAML files.

Rule file format::

    exercise: 02-render-props-to-hooks
    rules:
      - id: toggle-hook
        name: useToggle hook implementation
        applies_to: Toggle          # unit name, or "*" for the whole file
        required: [toggle, turnOn, {any_of: [turnOff, "regex:off\\("]}]
        forbidden: [TODO]
        min_length: 40
        diagnostics:
          - forbidden: TODO
            message: Toggle still contains TODO

Marker strings prefixed with ``regex:`` are regular expressions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from exercise_verify.core.exceptions import RuleLibraryError
from exercise_verify.core.types import (
    REGEX_PREFIX,
    CheckKind,
    DiagnosticStep,
    Marker,
    Rule,
)

logger = logging.getLogger(__name__)

_RULE_KEYS = frozenset(
    {
        "id",
        "name",
        "applies_to",
        "required",
        "forbidden",
        "min_length",
        "ignore_case",
        "missing_message",
        "fallback_message",
        "diagnostics",
    }
)

_STEP_KINDS = (CheckKind.REQUIRED, CheckKind.FORBIDDEN, CheckKind.MIN_LENGTH)


@dataclass(frozen=True, slots=True)
class RuleLibraryStats:
    """Counts describing a loaded library."""

    total_exercises: int
    total_rules: int
    rules_per_exercise: dict[str, int]


def _parse_marker(data: Any, rule_id: str, file_path: Path | None) -> Marker:
    """Parse a marker entry: a string, a list of alternatives, or a mapping.

    Raises:
        RuleLibraryError: If the entry is malformed or a regex is invalid.

    """
    min_count = 1
    if isinstance(data, str):
        patterns = [data]
    elif isinstance(data, list):
        patterns = data
    elif isinstance(data, dict):
        unknown = set(data) - {"any_of", "pattern", "min_count"}
        if unknown:
            raise RuleLibraryError(
                f"Rule '{rule_id}' marker has unknown keys: {sorted(unknown)}",
                file_path=file_path,
            )
        if "any_of" in data:
            patterns = data["any_of"]
        elif "pattern" in data:
            patterns = [data["pattern"]]
        else:
            raise RuleLibraryError(
                f"Rule '{rule_id}' marker mapping needs 'any_of' or 'pattern'",
                file_path=file_path,
            )
        min_count = data.get("min_count", 1)
    else:
        raise RuleLibraryError(
            f"Rule '{rule_id}' marker must be a string, list or mapping, "
            f"got {type(data).__name__}",
            file_path=file_path,
        )

    if not isinstance(patterns, list) or not patterns:
        raise RuleLibraryError(
            f"Rule '{rule_id}' marker needs at least one pattern", file_path=file_path
        )
    if not isinstance(min_count, int) or isinstance(min_count, bool) or min_count < 1:
        raise RuleLibraryError(
            f"Rule '{rule_id}' marker min_count must be a positive integer",
            file_path=file_path,
        )

    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern:
            raise RuleLibraryError(
                f"Rule '{rule_id}' marker patterns must be non-empty strings",
                file_path=file_path,
            )
        if pattern.startswith(REGEX_PREFIX):
            try:
                re.compile(pattern[len(REGEX_PREFIX) :])
            except re.error as e:
                raise RuleLibraryError(
                    f"Rule '{rule_id}' has invalid regex marker '{pattern}': {e}",
                    file_path=file_path,
                ) from e

    return Marker(patterns=tuple(patterns), min_count=min_count)


def _parse_markers(data: Any, key: str, rule_id: str, file_path: Path | None) -> tuple[Marker, ...]:
    if data is None:
        return ()
    if not isinstance(data, list):
        raise RuleLibraryError(f"Rule '{rule_id}' '{key}' must be a list", file_path=file_path)
    return tuple(_parse_marker(item, rule_id, file_path) for item in data)


def _parse_step(
    data: Any,
    rule_id: str,
    required: tuple[Marker, ...],
    forbidden: tuple[Marker, ...],
    min_length: int | None,
    file_path: Path | None,
) -> DiagnosticStep:
    """Parse one diagnostics entry and check it refers to a real check."""
    if not isinstance(data, dict):
        raise RuleLibraryError(
            f"Rule '{rule_id}' diagnostics entries must be mappings", file_path=file_path
        )
    message = data.get("message")
    if not isinstance(message, str) or not message:
        raise RuleLibraryError(
            f"Rule '{rule_id}' diagnostics entry needs a 'message'", file_path=file_path
        )
    kinds = [kind for kind in _STEP_KINDS if kind.value in data]
    if len(kinds) != 1 or set(data) - {"message", kinds[0].value}:
        raise RuleLibraryError(
            f"Rule '{rule_id}' diagnostics entry needs exactly one of "
            f"{[k.value for k in _STEP_KINDS]} plus 'message'",
            file_path=file_path,
        )
    kind = kinds[0]

    if kind is CheckKind.MIN_LENGTH:
        if min_length is None:
            raise RuleLibraryError(
                f"Rule '{rule_id}' has a min_length diagnostic but no min_length",
                file_path=file_path,
            )
        return DiagnosticStep(check=kind, message=message)

    label = data[kind.value]
    if isinstance(label, str) and label.startswith(REGEX_PREFIX):
        label = label[len(REGEX_PREFIX) :]
    markers = required if kind is CheckKind.REQUIRED else forbidden
    if label not in {m.label for m in markers}:
        raise RuleLibraryError(
            f"Rule '{rule_id}' diagnostic refers to unknown {kind.value} marker '{label}'",
            file_path=file_path,
        )
    return DiagnosticStep(check=kind, message=message, marker=label)


def parse_rule(data: Any, file_path: Path | None = None) -> Rule:
    """Parse a rule from YAML data.

    Args:
        data: Dictionary containing rule data.
        file_path: Path to the source file (for error context).

    Returns:
        Parsed Rule.

    Raises:
        RuleLibraryError: If the rule data is invalid.

    """
    if not isinstance(data, dict):
        raise RuleLibraryError(
            f"Rule must be a dictionary, got {type(data).__name__}", file_path=file_path
        )

    rule_id = data.get("id")
    if not rule_id or not isinstance(rule_id, str):
        raise RuleLibraryError("Rule missing required 'id' field", file_path=file_path)

    unknown = set(data) - _RULE_KEYS
    if unknown:
        raise RuleLibraryError(
            f"Rule '{rule_id}' has unknown keys: {sorted(unknown)}", file_path=file_path
        )

    applies_to = data.get("applies_to")
    if not applies_to or not isinstance(applies_to, str):
        raise RuleLibraryError(
            f"Rule '{rule_id}' missing required 'applies_to' field", file_path=file_path
        )

    min_length = data.get("min_length")
    if min_length is not None and (
        not isinstance(min_length, int) or isinstance(min_length, bool) or min_length < 0
    ):
        raise RuleLibraryError(
            f"Rule '{rule_id}' min_length must be a non-negative integer", file_path=file_path
        )

    required = _parse_markers(data.get("required"), "required", rule_id, file_path)
    forbidden = _parse_markers(data.get("forbidden"), "forbidden", rule_id, file_path)

    steps_data = data.get("diagnostics") or []
    if not isinstance(steps_data, list):
        raise RuleLibraryError(
            f"Rule '{rule_id}' 'diagnostics' must be a list", file_path=file_path
        )
    steps = tuple(
        _parse_step(step, rule_id, required, forbidden, min_length, file_path)
        for step in steps_data
    )

    return Rule(
        id=rule_id,
        applies_to=applies_to,
        name=str(data.get("name") or ""),
        required_markers=required,
        forbidden_markers=forbidden,
        diagnostic_order=steps,
        min_length=min_length,
        ignore_case=bool(data.get("ignore_case", False)),
        missing_message=data.get("missing_message"),
        fallback_message=data.get("fallback_message"),
    )


class RuleLibrary:
    """Per-exercise rule sets loaded from YAML files.

    Rule sets keep declaration order. When a later file defines a rule id
    that already exists for the same exercise, the later definition
    replaces it in place and a warning names both files.

    Attributes:
        _rules: Mapping from exercise id to its ordered rules.
        _sources: Mapping from (exercise id, rule id) to the defining file.

    """

    def __init__(self) -> None:
        """Initialize an empty rule library."""
        self._rules: dict[str, list[Rule]] = {}
        self._sources: dict[tuple[str, str], Path | None] = {}

    def __len__(self) -> int:
        """Return the number of exercises with rules."""
        return len(self._rules)

    def __repr__(self) -> str:
        """Return a string representation of the library."""
        total = sum(len(rules) for rules in self._rules.values())
        return f"RuleLibrary(exercises={len(self._rules)}, rules={total})"

    @classmethod
    def load(cls, paths: list[Path]) -> RuleLibrary:
        """Load rule sets from YAML files in the specified paths.

        Files within each directory are loaded recursively and alphabetically.

        Args:
            paths: List of paths to directories or YAML files.

        Returns:
            RuleLibrary with loaded rules.

        Raises:
            RuleLibraryError: If a YAML file has invalid structure or content.

        """
        library = cls()

        for path in paths:
            if path.is_dir():
                yaml_files = sorted(
                    list(path.rglob("*.yaml")) + list(path.rglob("*.yml")),
                    key=lambda p: str(p),
                )
                for yaml_file in yaml_files:
                    library._load_yaml_file(yaml_file)
            elif path.is_file() and path.suffix in (".yaml", ".yml"):
                library._load_yaml_file(path)
            else:
                logger.warning("Skipping non-YAML rules path: %s", path)

        logger.debug("Loaded %r", library)
        return library

    def _load_yaml_file(self, path: Path) -> None:
        """Load one exercise's rules from a YAML file.

        Raises:
            RuleLibraryError: If the YAML file has invalid structure or content.

        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RuleLibraryError(f"Invalid YAML syntax: {e}", file_path=path) from e
        except OSError as e:
            raise RuleLibraryError(f"Cannot read file: {e}", file_path=path) from e

        if data is None:
            logger.debug("Empty YAML file: %s", path)
            return

        if not isinstance(data, dict):
            raise RuleLibraryError(
                f"YAML root must be a dictionary, got {type(data).__name__}", file_path=path
            )

        exercise_id = data.get("exercise")
        if not exercise_id or not isinstance(exercise_id, str):
            raise RuleLibraryError("Missing required 'exercise' field", file_path=path)

        rules_data = data.get("rules")
        if rules_data is None:
            logger.debug("No 'rules' key in YAML file: %s", path)
            return
        if not isinstance(rules_data, list):
            raise RuleLibraryError(
                f"'rules' must be a list, got {type(rules_data).__name__}", file_path=path
            )

        rules: list[Rule] = []
        seen: set[str] = set()
        for idx, rule_data in enumerate(rules_data):
            try:
                rule = parse_rule(rule_data)
            except RuleLibraryError as e:
                raise RuleLibraryError(f"Error in rule at index {idx}: {e}", file_path=path) from e
            if rule.id in seen:
                raise RuleLibraryError(f"Duplicate rule id '{rule.id}'", file_path=path)
            seen.add(rule.id)
            rules.append(rule)

        self.add_rules(exercise_id, rules, source=path)

    def add_rules(self, exercise_id: str, rules: list[Rule], source: Path | None = None) -> None:
        """Register rules for an exercise, overriding rules with the same id.

        Args:
            exercise_id: Exercise the rules belong to.
            rules: Rules in declaration order.
            source: File the rules came from, for override warnings.

        """
        existing = self._rules.setdefault(exercise_id, [])
        positions = {rule.id: idx for idx, rule in enumerate(existing)}
        for rule in rules:
            key = (exercise_id, rule.id)
            if rule.id in positions:
                logger.warning(
                    "Duplicate rule '%s' for exercise '%s': %s overrides previous definition from %s",
                    rule.id,
                    exercise_id,
                    source or "code",
                    self._sources.get(key) or "code",
                )
                existing[positions[rule.id]] = rule
            else:
                positions[rule.id] = len(existing)
                existing.append(rule)
            self._sources[key] = source

    def get_rules(self, exercise_id: str) -> list[Rule]:
        """Get an exercise's rules in declaration order (empty if none)."""
        return list(self._rules.get(exercise_id, []))

    def has_rules(self, exercise_id: str) -> bool:
        """Whether any rules are registered for the exercise."""
        return bool(self._rules.get(exercise_id))

    def exercise_ids(self) -> list[str]:
        """Exercise ids with rules, sorted."""
        return sorted(self._rules)

    def stats(self) -> RuleLibraryStats:
        """Summarize the library contents."""
        per_exercise = {eid: len(self._rules[eid]) for eid in self.exercise_ids()}
        return RuleLibraryStats(
            total_exercises=len(per_exercise),
            total_rules=sum(per_exercise.values()),
            rules_per_exercise=per_exercise,
        )


def scaffold_rule_file(exercise_id: str, units: list[str]) -> str:
    """Generate a starter rule file for an exercise.

    Each unit gets one rule that forbids the usual placeholder and leaves
    the required markers for the author to fill in.

    Args:
        exercise_id: Exercise the rules belong to.
        units: Unit names to create rules for.

    Returns:
        YAML text ready to be written to the rules directory.

    """
    rules = [
        {
            "id": f"{unit.lower()}-implementation",
            "name": f"{unit} implementation",
            "applies_to": unit,
            "required": [],
            "forbidden": ["TODO"],
            "diagnostics": [
                {"forbidden": "TODO", "message": f"{unit} still contains TODO comments"},
            ],
        }
        for unit in units
    ]
    return yaml.safe_dump(
        {"exercise": exercise_id, "rules": rules},
        sort_keys=False,
        default_flow_style=False,
    )
