"""Tests for the passthrough and command transpilers."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from exercise_verify.core.exceptions import TranspilerError
from exercise_verify.transpiler import CommandTranspiler, PassthroughTranspiler, parse_diagnostics


class TestParseDiagnostics:
    """Tests for parse_diagnostics."""

    def test_tsc_paren_format(self) -> None:
        output = "src/app.tsx(12,5): error TS2304: Cannot find name 'foo'.\n"

        errors, other = parse_diagnostics(output)

        assert other == []
        [error] = errors
        assert (error.file, error.line, error.column, error.code) == ("src/app.tsx", 12, 5, "TS2304")
        assert error.message == "Cannot find name 'foo'."

    def test_colon_format_with_ansi_colors(self) -> None:
        output = "\x1b[96msrc/app.tsx\x1b[0m:3:1 - \x1b[91merror\x1b[0m TS1005: ';' expected.\n"

        [error], _ = parse_diagnostics(output)

        assert (error.file, error.line, error.column) == ("src/app.tsx", 3, 1)
        assert error.code == "TS1005"
        assert error.message == "';' expected."

    def test_other_lines_kept_as_console_output(self) -> None:
        errors, other = parse_diagnostics("Found 1 error.\n\n  warning: unused\n")
        assert errors == []
        assert other == ["Found 1 error.", "warning: unused"]


class TestPassthroughTranspiler:
    """Tests for PassthroughTranspiler."""

    @pytest.mark.asyncio
    async def test_returns_source(self) -> None:
        result = await PassthroughTranspiler().transpile("const a = 1;", Path("a.ts"))
        assert result.compiled_text == "const a = 1;"
        assert result.compilation_errors == ()


class TestCommandTranspiler:
    """Tests for CommandTranspiler with real subprocesses."""

    @pytest.mark.asyncio
    async def test_stdout_output(self) -> None:
        """Compiled text is the command's stdout; source arrives on stdin."""
        transpiler = CommandTranspiler(
            [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"],
            output="stdout",
        )

        result = await transpiler.transpile("const a = 1;", Path("a.ts"))

        assert result.compiled_text == "CONST A = 1;"
        assert result.compilation_errors == ()

    @pytest.mark.asyncio
    async def test_diagnostics_from_failing_command(self) -> None:
        """Type-check style commands report errors and keep the source."""
        script = (
            "import sys; "
            "print(sys.argv[1] + '(2,3): error TS2304: Cannot find name x.'); "
            "sys.exit(2)"
        )
        transpiler = CommandTranspiler([sys.executable, "-c", script, "{file}"], output="source")

        result = await transpiler.transpile("x;", Path("ex.tsx"))

        assert result.compiled_text == "x;"
        [error] = result.compilation_errors
        assert (error.file, error.line, error.column, error.code) == ("ex.tsx", 2, 3, "TS2304")

    @pytest.mark.asyncio
    async def test_unparsable_failure_uses_stderr(self) -> None:
        """A non-zero exit without diagnostics yields one error from stderr."""
        script = "import sys; sys.stderr.write('boom'); sys.exit(1)"
        transpiler = CommandTranspiler([sys.executable, "-c", script], output="stdout")

        result = await transpiler.transpile("x", Path("ex.tsx"))

        assert result.compiled_text == ""
        [error] = result.compilation_errors
        assert error.message == "boom"

    @pytest.mark.asyncio
    async def test_missing_executable(self) -> None:
        transpiler = CommandTranspiler(["exercise-verify-no-such-compiler"])
        with pytest.raises(TranspilerError, match="not found"):
            await transpiler.transpile("x", Path("ex.tsx"))

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        transpiler = CommandTranspiler(
            [sys.executable, "-c", "import time; time.sleep(5)"], timeout_seconds=0.2
        )
        with pytest.raises(TranspilerError, match="timed out"):
            await transpiler.transpile("x", Path("ex.tsx"))

    def test_file_placeholder(self) -> None:
        transpiler = CommandTranspiler(["tsc", "--noEmit", "{file}"])
        assert transpiler.build_args(Path("a/b.tsx")) == ["tsc", "--noEmit", str(Path("a/b.tsx"))]

    def test_empty_command_rejected(self) -> None:
        with pytest.raises(ValueError, match="must not be empty"):
            CommandTranspiler([])
