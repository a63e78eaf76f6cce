"""Transpiler backed by an external compiler process.

Runs a command such as ``npx tsc --noEmit {file}`` or
``npx esbuild --loader=tsx`` with asyncio subprocesses, feeding the source
on stdin and parsing TypeScript-style diagnostics from its output.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Literal

from exercise_verify.core.exceptions import TranspilerError
from exercise_verify.core.types import CompilationError, TranspileResult
from exercise_verify.transpiler.base import Transpiler

logger = logging.getLogger(__name__)

FILE_PLACEHOLDER = "{file}"

# tsc default: src/app.tsx(12,5): error TS2304: Cannot find name 'foo'.
_PAREN_DIAGNOSTIC = re.compile(
    r"^(?P<file>.+?)\((?P<line>\d+),(?P<column>\d+)\):\s*error\s+(?P<code>\w+)?:?\s*(?P<message>.*)$"
)
# tsc --pretty / esbuild style: src/app.tsx:12:5 - error TS2304: Cannot find name 'foo'.
_COLON_DIAGNOSTIC = re.compile(
    r"^(?P<file>.+?):(?P<line>\d+):(?P<column>\d+)\s*-\s*error\s+(?P<code>\w+)?:?\s*(?P<message>.*)$"
)
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")


def parse_diagnostics(output: str) -> tuple[list[CompilationError], list[str]]:
    """Split compiler output into diagnostics and remaining lines.

    Args:
        output: Combined compiler output.

    Returns:
        Tuple of (compilation errors, other non-empty lines).

    """
    errors: list[CompilationError] = []
    other: list[str] = []
    for raw in output.splitlines():
        line = _ANSI_ESCAPE.sub("", raw).strip()
        if not line:
            continue
        match = _PAREN_DIAGNOSTIC.match(line) or _COLON_DIAGNOSTIC.match(line)
        if match is None:
            other.append(line)
            continue
        errors.append(
            CompilationError(
                message=match.group("message").strip(),
                file=match.group("file").strip(),
                line=int(match.group("line")),
                column=int(match.group("column")),
                code=match.group("code"),
            )
        )
    return errors, other


class CommandTranspiler(Transpiler):
    """Runs an external command as the transpiler.

    Attributes:
        command: Argument list; ``{file}`` is replaced by the exercise path.
        output: "stdout" to use the command's stdout as compiled text,
            "source" to keep the source (type-check only commands).
        timeout_seconds: Optional limit on one invocation.

    """

    def __init__(
        self,
        command: Sequence[str],
        output: Literal["source", "stdout"] = "source",
        timeout_seconds: float | None = None,
        cwd: Path | None = None,
    ) -> None:
        """Initialize CommandTranspiler.

        Args:
            command: Argument list, at least the executable.
            output: Where compiled text comes from.
            timeout_seconds: Optional limit on one invocation.
            cwd: Working directory for the command.

        Raises:
            ValueError: If command is empty.

        """
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.output = output
        self.timeout_seconds = timeout_seconds
        self.cwd = cwd

    def __repr__(self) -> str:
        """Return a string representation of the transpiler."""
        return (
            f"CommandTranspiler(command={self.command!r}, output={self.output!r}, "
            f"timeout_seconds={self.timeout_seconds})"
        )

    def build_args(self, file_path: Path) -> list[str]:
        """Return the argument list with the file placeholder substituted."""
        return [arg.replace(FILE_PLACEHOLDER, str(file_path)) for arg in self.command]

    async def transpile(self, source_text: str, file_path: Path) -> TranspileResult:
        """Run the command and collect compiled text and diagnostics.

        Raises:
            TranspilerError: If the executable is missing, cannot be started,
                or exceeds the timeout.

        """
        args = self.build_args(file_path)
        logger.debug("Running transpiler: %s", " ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=self.cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranspilerError(f"Transpiler executable not found: {args[0]}") from e
        except OSError as e:
            raise TranspilerError(f"Failed to start transpiler {args[0]}: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(source_text.encode("utf-8")),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise TranspilerError(
                f"Transpiler timed out after {self.timeout_seconds}s: {args[0]}"
            ) from e

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        returncode = process.returncode

        if self.output == "stdout":
            errors, console = parse_diagnostics(stderr)
            compiled_text = stdout if returncode == 0 else ""
        else:
            errors, console = parse_diagnostics(stdout + "\n" + stderr)
            compiled_text = source_text

        if returncode != 0 and not errors:
            message = stderr.strip() or stdout.strip() or f"exited with code {returncode}"
            errors.append(CompilationError(message=message, file=str(file_path)))

        logger.debug(
            "Transpiler exited with %s (%d errors, %d console lines)",
            returncode,
            len(errors),
            len(console),
        )
        return TranspileResult(
            compiled_text=compiled_text,
            compilation_errors=tuple(errors),
            console_output=tuple(console),
        )
