"""Code unit locator.

Extracts the body of a named declaration from raw source text that may be
mid-edit and syntactically broken. Three declaration shapes are tried in
order: function declaration, ``const``/``let``/``var`` bound to a function
or arrow value, and class declaration. The body is delimited by brace depth
counted over code characters only (see scanner.iter_code).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable

from exercise_verify.core.types import SourceUnit, UnitKind
from exercise_verify.locator.scanner import code_mask, find_block_end, iter_code

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_$][\w$]*$")

# A type literal, not a body, follows one of these in a signature
_TYPE_CONTEXT = frozenset(":|&<,(")

# Statements that cannot continue an expression started by an assignment
_STATEMENT_START = re.compile(r"(?:const|let|var|export|import)\b")


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _function_body_open(text: str, start: int) -> int | None:
    """Find the body brace of a function declaration, after its parameters."""
    depth = 0
    params_closed = False
    skip = 0
    prev = ""
    for i, ch in iter_code(text, start):
        if ch.isspace():
            continue
        if skip:
            if ch == "{":
                skip += 1
            elif ch == "}":
                skip -= 1
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                params_closed = True
        elif ch == "{" and depth == 0:
            if params_closed and prev not in _TYPE_CONTEXT:
                return i
            # generic constraint or return type literal
            skip = 1
        elif ch == ";" and depth == 0:
            # overload signature or declaration without a body
            return None
        prev = ch
    return None


def _assignment_body_open(text: str, start: int) -> int | None:
    """Find the body brace of a value bound by const/let/var.

    Prefers a brace that opens an arrow or function body; a brace opened
    directly by the assigned value (object literal, class expression) is
    taken as is. Destructured parameters are passed over but remembered as
    a fallback, matching a plain "first brace" search when nothing better
    exists before the end of the statement.
    """
    depth = 0
    fallback: int | None = None
    prev = "="
    prev2 = ""
    for i, ch in iter_code(text, start):
        if ch.isspace():
            continue
        if (
            depth == 0
            and ch in "celiv"
            and i > 0
            and not _is_ident_char(text[i - 1])
            and text[i - 1] != "."
            and _STATEMENT_START.match(text, i)
        ):
            break
        if ch == "{":
            if prev == ")" or (prev == ">" and prev2 == "="):
                return i
            if depth == 0 and (prev == "=" or _is_ident_char(prev)):
                return i
            if fallback is None:
                fallback = i
            depth += 1
        elif ch in "([":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == ";" and depth <= 0:
            break
        prev2, prev = prev, ch
    return fallback


def _class_body_open(text: str, start: int) -> int | None:
    """Find the body brace of a class declaration."""
    depth = 0
    for i, ch in iter_code(text, start):
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch == "{" and depth == 0:
            return i
        elif ch == ";" and depth == 0:
            return None
    return None


_Strategy = tuple[UnitKind, Callable[[str], re.Pattern[str]], Callable[[str, int], int | None]]


def _function_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![\w$])function\b\s*\*?\s*{re.escape(name)}(?![\w$])")


def _assignment_pattern(name: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?<![\w$])(?:const|let|var)\s+{re.escape(name)}(?![\w$])\s*(?::[^=;]*)?=(?![=>])"
    )


def _class_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![\w$])class\s+{re.escape(name)}(?![\w$])")


_STRATEGIES: tuple[_Strategy, ...] = (
    (UnitKind.FUNCTION, _function_pattern, _function_body_open),
    (UnitKind.ASSIGNMENT, _assignment_pattern, _assignment_body_open),
    (UnitKind.CLASS, _class_pattern, _class_body_open),
)


class CodeUnitLocator:
    """Locates named declaration bodies in source text.

    The locator is stateless and never raises: any input that does not
    contain a complete declaration of the requested name yields None.

    Example:
        >>> locator = CodeUnitLocator()
        >>> unit = locator.locate("function foo(){ return 1; }", "foo")
        >>> unit.text
        ' return 1; '

    """

    def __repr__(self) -> str:
        """Return a string representation of the locator."""
        return "CodeUnitLocator()"

    def locate(self, source_text: str, unit_name: str) -> SourceUnit | None:
        """Extract the body of the declaration named ``unit_name``.

        Args:
            source_text: Raw or compiled source, possibly malformed.
            unit_name: Identifier of the function, binding or class.

        Returns:
            SourceUnit with the body text (braces excluded), or None when no
            declaration is found or its body never closes.

        """
        if not source_text or not _IDENTIFIER.match(unit_name):
            return None
        return self._locate(source_text, unit_name, code_mask(source_text))

    def locate_all(
        self, source_text: str, names: Iterable[str]
    ) -> dict[str, SourceUnit | None]:
        """Locate several units, scanning the code mask only once.

        Args:
            source_text: Raw or compiled source, possibly malformed.
            names: Unit names to look up.

        Returns:
            Mapping from each name to its SourceUnit or None.

        """
        mask = code_mask(source_text) if source_text else bytearray()
        units: dict[str, SourceUnit | None] = {}
        for name in names:
            if name in units:
                continue
            if not source_text or not _IDENTIFIER.match(name):
                units[name] = None
            else:
                units[name] = self._locate(source_text, name, mask)
        return units

    def _locate(self, text: str, name: str, mask: bytearray) -> SourceUnit | None:
        for kind, make_pattern, find_open in _STRATEGIES:
            for match in make_pattern(name).finditer(text):
                if not mask[match.start()]:
                    # inside a string, template or comment
                    continue
                open_index = find_open(text, match.end())
                if open_index is None:
                    continue
                close_index = find_block_end(text, open_index)
                if close_index is None:
                    logger.debug(
                        "Unit '%s' (%s) at offset %d never closes",
                        name,
                        kind.value,
                        open_index,
                    )
                    return None
                return SourceUnit(
                    name=name,
                    kind=kind,
                    text=text[open_index + 1 : close_index],
                    start_offset=open_index + 1,
                    end_offset=close_index,
                )
        return None
