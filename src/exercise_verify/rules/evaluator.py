"""Rule evaluator for exercise-verify.

This module provides the RuleEvaluator class, which scores declarative
rules against located source units and produces one RuleResult per rule
with the most specific failure message available.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from exercise_verify.core.exceptions import RuleEvaluationError
from exercise_verify.core.timing import elapsed_ms, monotonic
from exercise_verify.core.types import (
    REGEX_PREFIX,
    CheckKind,
    FailureReason,
    Marker,
    Rule,
    RuleResult,
    SourceUnit,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CheckOutcome:
    """Result of one check within a rule.

    Attributes:
        kind: Which kind of check ran.
        met: Whether the check is satisfied.
        marker: Marker checked (required/forbidden only).
        observed: What was found (occurrence count or text length).

    """

    kind: CheckKind
    met: bool
    marker: Marker | None = None
    observed: int | None = None


class RuleEvaluator:
    """Evaluates rules against source units.

    Evaluation is a pure function of the unit text: no I/O and no shared
    state beyond a cache of compiled regex markers. ``evaluate`` always
    returns exactly one result per rule, in rule order, and never raises.

    Example:
        >>> evaluator = RuleEvaluator()
        >>> rule = Rule(id="r1", applies_to="foo", required_markers=(Marker.of("return"),))
        >>> unit = CodeUnitLocator().locate("function foo(){ return 1; }", "foo")
        >>> evaluator.evaluate({"foo": unit}, [rule])[0].passed
        True

    """

    def __init__(self) -> None:
        """Initialize the evaluator with an empty regex cache."""
        self._compiled: dict[tuple[str, bool], re.Pattern[str]] = {}

    def __repr__(self) -> str:
        """Return a string representation of the evaluator."""
        return f"RuleEvaluator(cached_regexes={len(self._compiled)})"

    def evaluate(
        self,
        units: Mapping[str, SourceUnit | None],
        rules: Sequence[Rule],
    ) -> list[RuleResult]:
        """Evaluate every rule against its target unit.

        Args:
            units: Located units keyed by name; None means not found. A rule
                whose target is absent from the mapping is treated as not
                found.
            rules: Rules in declaration order.

        Returns:
            One RuleResult per rule, same order.

        """
        results: list[RuleResult] = []
        for rule in rules:
            start = monotonic()
            try:
                result = self.evaluate_rule(rule, units.get(rule.applies_to))
            except Exception as e:
                result = self._internal_error(rule, e)
            results.append(replace(result, execution_time_ms=elapsed_ms(start)))
        return results

    def evaluate_rule(self, rule: Rule, unit: SourceUnit | None) -> RuleResult:
        """Evaluate a single rule.

        Args:
            rule: The rule to evaluate.
            unit: The rule's target unit, or None if it was not found.

        Returns:
            RuleResult without timing information.

        Raises:
            RuleEvaluationError: If the rule itself is malformed.
            Exception: Whatever the rule's predicate raises.

        """
        target = self._target_name(rule)
        if unit is None:
            return RuleResult(
                rule_id=rule.id,
                name=rule.display_name,
                passed=False,
                message=rule.missing_message
                or f"{target} not found - declare a function, const or class named {rule.applies_to}",
                reason=FailureReason.UNIT_MISSING,
                expected=rule.applies_to,
            )

        outcomes = self.run_checks(rule, unit.text)
        # Resolve diagnostic steps even on success so authoring bugs surface
        steps = [(step, self._find_outcome(rule, step, outcomes)) for step in rule.diagnostic_order]

        if all(outcome.met for outcome in outcomes):
            return RuleResult(rule_id=rule.id, name=rule.display_name, passed=True)

        for step, outcome in steps:
            if not outcome.met:
                return self._failure(rule, outcome, step.message)

        first_unmet = next(outcome for outcome in outcomes if not outcome.met)
        message = rule.fallback_message or self._default_message(rule, first_unmet)
        return self._failure(rule, first_unmet, message)

    def run_checks(self, rule: Rule, text: str) -> list[CheckOutcome]:
        """Run all of a rule's checks against text, in declaration order.

        Order: required markers, forbidden markers, min_length, predicate.
        """
        outcomes: list[CheckOutcome] = []
        for marker in rule.required_markers:
            count = self.count_marker(rule, marker, text)
            outcomes.append(
                CheckOutcome(
                    kind=CheckKind.REQUIRED,
                    met=count >= marker.min_count,
                    marker=marker,
                    observed=count,
                )
            )
        for marker in rule.forbidden_markers:
            count = self.count_marker(rule, marker, text)
            outcomes.append(
                CheckOutcome(
                    kind=CheckKind.FORBIDDEN,
                    met=count < marker.min_count,
                    marker=marker,
                    observed=count,
                )
            )
        if rule.min_length is not None:
            outcomes.append(
                CheckOutcome(
                    kind=CheckKind.MIN_LENGTH,
                    met=len(text) >= rule.min_length,
                    observed=len(text),
                )
            )
        if rule.predicate is not None:
            outcomes.append(CheckOutcome(kind=CheckKind.PREDICATE, met=bool(rule.predicate(text))))
        return outcomes

    def count_marker(self, rule: Rule, marker: Marker, text: str) -> int:
        """Return the highest occurrence count among a marker's alternatives."""
        return max(self._count_pattern(rule, pattern, text) for pattern in marker.patterns)

    def _count_pattern(self, rule: Rule, pattern: str, text: str) -> int:
        if pattern.startswith(REGEX_PREFIX):
            regex = self._compile(rule, pattern[len(REGEX_PREFIX) :])
            return sum(1 for _ in regex.finditer(text))
        if rule.ignore_case:
            return text.lower().count(pattern.lower())
        return text.count(pattern)

    def _compile(self, rule: Rule, source: str) -> re.Pattern[str]:
        key = (source, rule.ignore_case)
        compiled = self._compiled.get(key)
        if compiled is None:
            flags = re.DOTALL | (re.IGNORECASE if rule.ignore_case else 0)
            try:
                compiled = re.compile(source, flags)
            except re.error as e:
                raise RuleEvaluationError(
                    f"Invalid regex marker '{source}': {e}", rule_id=rule.id
                ) from e
            self._compiled[key] = compiled
        return compiled

    def _find_outcome(
        self, rule: Rule, step: Any, outcomes: list[CheckOutcome]
    ) -> CheckOutcome:
        for outcome in outcomes:
            if outcome.kind is not step.check:
                continue
            if outcome.marker is None or outcome.marker.label == step.marker:
                return outcome
        raise RuleEvaluationError(
            f"Diagnostic step refers to unknown {step.check.value} check '{step.marker}'",
            rule_id=rule.id,
        )

    def _failure(self, rule: Rule, outcome: CheckOutcome, message: str) -> RuleResult:
        expected: Any = None
        actual: Any = None
        if outcome.kind is CheckKind.REQUIRED and outcome.marker is not None:
            expected = outcome.marker.label
            actual = outcome.observed
        elif outcome.kind is CheckKind.FORBIDDEN and outcome.marker is not None:
            actual = outcome.marker.label
        elif outcome.kind is CheckKind.MIN_LENGTH:
            expected = rule.min_length
            actual = outcome.observed
        return RuleResult(
            rule_id=rule.id,
            name=rule.display_name,
            passed=False,
            message=message,
            reason=FailureReason.CHECK_UNMET,
            expected=expected,
            actual=actual,
        )

    def _default_message(self, rule: Rule, outcome: CheckOutcome) -> str:
        target = self._target_name(rule)
        marker = outcome.marker
        if outcome.kind is CheckKind.REQUIRED and marker is not None:
            if marker.min_count > 1:
                return (
                    f"{target} should use `{marker.label}` at least {marker.min_count} times "
                    f"(found {outcome.observed})"
                )
            return f"{target} should implement `{marker.label}`"
        if outcome.kind is CheckKind.FORBIDDEN and marker is not None:
            return f"{target} still contains {marker.label}"
        if outcome.kind is CheckKind.MIN_LENGTH:
            return (
                f"{target} needs a more substantial implementation "
                f"(at least {rule.min_length} characters, found {outcome.observed})"
            )
        return f"{target} failed custom validation"

    @staticmethod
    def _target_name(rule: Rule) -> str:
        return "The file" if rule.is_whole_file else rule.applies_to

    @staticmethod
    def _internal_error(rule: Rule, error: Exception) -> RuleResult:
        rule_id = getattr(rule, "id", "<unknown>")
        logger.warning(
            "Rule '%s' raised during evaluation: %s: %s",
            rule_id,
            type(error).__name__,
            error,
        )
        name = getattr(rule, "display_name", rule_id)
        return RuleResult(
            rule_id=rule_id,
            name=name,
            passed=False,
            message=f"Internal error while checking {name}: {error}",
            reason=FailureReason.INTERNAL_ERROR,
        )
