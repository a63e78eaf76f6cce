"""Declarative rules and their evaluation.

Example:
    >>> from exercise_verify.rules import RuleLibrary, RuleEvaluator
    >>> from pathlib import Path
    >>>
    >>> library = RuleLibrary.load([Path("rules")])
    >>> rules = library.get_rules("02-render-props-to-hooks")
    >>> results = RuleEvaluator().evaluate(units, rules)

"""

from exercise_verify.rules.evaluator import CheckOutcome, RuleEvaluator
from exercise_verify.rules.library import (
    RuleLibrary,
    RuleLibraryStats,
    parse_rule,
    scaffold_rule_file,
)

__all__ = [
    "CheckOutcome",
    "RuleEvaluator",
    "RuleLibrary",
    "RuleLibraryStats",
    "parse_rule",
    "scaffold_rule_file",
]
