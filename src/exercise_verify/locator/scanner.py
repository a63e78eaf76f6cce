"""Minimal JavaScript/TypeScript scanner.

Walks source text and yields only the characters that are code: contents of
string literals, template literals (outside ``${...}``), regular expression
literals and comments are skipped. Brace counting over these positions is
immune to braces that appear inside literals.

The scanner never raises. Unterminated block comments and template literals
consume the rest of the text; unterminated quoted strings end at the line
break, mirroring how editors recover while the learner is typing.

Known limits: regex literals are recognised by the usual "previous token"
heuristic, and JSX text is scanned as code (an apostrophe in JSX text opens
a string until the end of the line). Transpiled output contains neither
ambiguity.
"""

from __future__ import annotations

from collections.abc import Iterator

# After one of these a "/" starts a regex literal rather than a division
_REGEX_PRECEDERS = frozenset("(,=:[!&|?{};+-*%~^")

# Keywords after which a "/" starts a regex literal
_REGEX_KEYWORDS = frozenset(
    {
        "return", "typeof", "case", "throw", "yield", "await", "in", "of",
        "new", "delete", "void", "do", "else",
    }
)


def _skip_quoted(text: str, i: int) -> int:
    """Return the index just past the string literal starting at ``i``."""
    quote = text[i]
    n = len(text)
    j = i + 1
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == quote:
            return j + 1
        if c == "\n":
            return j
        j += 1
    return n


def _word_before(text: str, end: int) -> str:
    """Return the identifier ending at index ``end`` (inclusive), if any."""
    start = end
    while start >= 0 and (text[start].isalnum() or text[start] in "_$"):
        start -= 1
    if start >= 0 and text[start] == ".":
        return ""
    return text[start + 1 : end + 1]


def _starts_regex(text: str, prev_sig: str, prev_index: int) -> bool:
    """Whether a "/" following the last code character opens a regex literal."""
    if not prev_sig or prev_sig in _REGEX_PRECEDERS:
        return True
    if not (prev_sig.isalnum() or prev_sig in "_$"):
        return False
    return _word_before(text, prev_index) in _REGEX_KEYWORDS


def _skip_regex(text: str, i: int) -> int:
    """Return the index just past the regex literal starting at ``i``."""
    n = len(text)
    j = i + 1
    in_class = False
    while j < n:
        c = text[j]
        if c == "\\":
            j += 2
            continue
        if c == "\n":
            return j
        if in_class:
            if c == "]":
                in_class = False
        elif c == "[":
            in_class = True
        elif c == "/":
            j += 1
            while j < n and (text[j].isalnum() or text[j] == "_"):
                j += 1
            return j
        j += 1
    return n


def iter_code(text: str, start: int = 0) -> Iterator[tuple[int, str]]:
    """Yield ``(index, char)`` for every code character from ``start``.

    ``start`` must be a position in code (not inside a literal or comment).

    Args:
        text: Source text, possibly malformed.
        start: Index to start scanning from.

    Yields:
        Index and character of each code character, in order.

    """
    n = len(text)
    i = start
    in_template = False
    # Brace depth inside each open ${...} interpolation, innermost last
    interpolations: list[int] = []
    prev_sig = ""
    prev_index = -1

    while i < n:
        ch = text[i]

        if in_template:
            if ch == "\\":
                i += 2
            elif ch == "`":
                in_template = False
                prev_sig = "`"
                i += 1
            elif ch == "$" and i + 1 < n and text[i + 1] == "{":
                interpolations.append(0)
                in_template = False
                prev_sig = "{"
                i += 2
            else:
                i += 1
            continue

        nxt = text[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            end = text.find("\n", i + 2)
            if end == -1:
                return
            i = end
            continue
        if ch == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            if end == -1:
                return
            i = end + 2
            continue
        # "/>" closes a JSX element, never a regex in practice
        if ch == "/" and nxt != ">" and _starts_regex(text, prev_sig, prev_index):
            i = _skip_regex(text, i)
            prev_sig = "/"
            continue
        if ch == "'" or ch == '"':
            i = _skip_quoted(text, i)
            prev_sig = ch
            continue
        if ch == "`":
            in_template = True
            i += 1
            continue

        if interpolations:
            if ch == "{":
                interpolations[-1] += 1
            elif ch == "}":
                if interpolations[-1] == 0:
                    interpolations.pop()
                    in_template = True
                    i += 1
                    continue
                interpolations[-1] -= 1

        if not ch.isspace():
            prev_sig = ch
            prev_index = i
        yield i, ch
        i += 1


def code_mask(text: str) -> bytearray:
    """Return a mask with 1 at every index of ``text`` that is code."""
    mask = bytearray(len(text))
    for i, _ in iter_code(text):
        mask[i] = 1
    return mask


def find_block_end(text: str, open_index: int) -> int | None:
    """Find the ``}`` matching the ``{`` at ``open_index``.

    Args:
        text: Source text.
        open_index: Index of an opening brace that is code.

    Returns:
        Index of the matching closing brace, or None when depth never
        returns to zero (truncated or malformed source).

    """
    depth = 0
    for i, ch in iter_code(text, open_index):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None
