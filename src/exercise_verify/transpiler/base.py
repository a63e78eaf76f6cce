"""Transpiler contract.

The transpiler is the engine's only suspension point: it turns exercise
source into the text the locator works on and reports diagnostics as
data. It must not raise for compilation failures; only an inability to
run at all is an exception (TranspilerError).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from exercise_verify.core.types import TranspileResult

logger = logging.getLogger(__name__)


class Transpiler(ABC):
    """Abstract base class for transpilers.

    Example:
        >>> class Upper(Transpiler):
        ...     async def transpile(self, source_text, file_path):
        ...         return TranspileResult(compiled_text=source_text.upper())

    """

    @property
    def name(self) -> str:
        """Return a short identifier for logs."""
        return type(self).__name__

    @abstractmethod
    async def transpile(self, source_text: str, file_path: Path) -> TranspileResult:
        """Compile source text.

        Args:
            source_text: Current content of the exercise file.
            file_path: Path of the exercise file, for diagnostics.

        Returns:
            TranspileResult with compiled text and diagnostics.

        Raises:
            TranspilerError: If the transpiler could not run.

        """


class PassthroughTranspiler(Transpiler):
    """Returns the source unchanged with no diagnostics.

    Suitable when rules are written against the raw source, which is how
    exercise checks are normally authored.
    """

    def __repr__(self) -> str:
        """Return a string representation of the transpiler."""
        return "PassthroughTranspiler()"

    async def transpile(self, source_text: str, file_path: Path) -> TranspileResult:
        """Return the source text as compiled text."""
        return TranspileResult(compiled_text=source_text)
