"""Transpilers: turn exercise source into locatable text plus diagnostics."""

from exercise_verify.transpiler.base import PassthroughTranspiler, Transpiler
from exercise_verify.transpiler.command import CommandTranspiler, parse_diagnostics

__all__ = [
    "CommandTranspiler",
    "PassthroughTranspiler",
    "Transpiler",
    "parse_diagnostics",
]
