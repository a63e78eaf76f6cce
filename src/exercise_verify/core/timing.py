"""Centralized time API for exercise-verify.

Rule timings are measured with a monotonic clock that tests can replace,
so reports can be compared deterministically.

Usage:
    from exercise_verify.core.timing import monotonic, elapsed_ms

    start = monotonic()
    # ... work ...
    ms = elapsed_ms(start)
"""

from __future__ import annotations

import time
from collections.abc import Callable

_clock: Callable[[], float] = time.perf_counter


def set_clock(clock: Callable[[], float]) -> None:
    """Set custom monotonic clock for testing.

    Args:
        clock: Function returning seconds as a float.

    """
    global _clock
    _clock = clock


def reset_clock() -> None:
    """Reset clock to default (time.perf_counter)."""
    global _clock
    _clock = time.perf_counter


def monotonic() -> float:
    """Return the current monotonic time in seconds."""
    return _clock()


def elapsed_ms(start: float, end: float | None = None) -> float:
    """Calculate elapsed milliseconds since ``start``.

    Args:
        start: Start time from monotonic().
        end: End time, defaults to now.

    Returns:
        Elapsed milliseconds, never negative.

    """
    if end is None:
        end = _clock()
    return max(0.0, (end - start) * 1000.0)


def format_duration_ms(milliseconds: float) -> str:
    """Format a rule or run duration for display.

    Examples:
        >>> format_duration_ms(0.42)
        '0.42ms'
        >>> format_duration_ms(12.5)
        '12.5ms'
        >>> format_duration_ms(1530)
        '1.53s'

    """
    if milliseconds < 0:
        milliseconds = 0
    if milliseconds < 1:
        return f"{milliseconds:.2f}ms"
    if milliseconds < 1000:
        return f"{milliseconds:.1f}ms"
    return f"{milliseconds / 1000:.2f}s"
