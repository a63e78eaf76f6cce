"""Tests for the injectable clock and duration formatting."""

from __future__ import annotations

from exercise_verify.core import timing


class TestClock:
    """Tests for set_clock / elapsed_ms."""

    def test_injected_clock(self) -> None:
        """elapsed_ms uses the injected clock."""
        ticks = iter([10.0, 10.25])
        timing.set_clock(lambda: next(ticks))

        start = timing.monotonic()

        assert timing.elapsed_ms(start) == 250.0

    def test_elapsed_never_negative(self) -> None:
        """A clock going backwards yields zero."""
        assert timing.elapsed_ms(5.0, 4.0) == 0.0


class TestFormatDuration:
    """Tests for format_duration_ms."""

    def test_sub_millisecond(self) -> None:
        assert timing.format_duration_ms(0.42) == "0.42ms"

    def test_milliseconds(self) -> None:
        assert timing.format_duration_ms(12.5) == "12.5ms"

    def test_seconds(self) -> None:
        assert timing.format_duration_ms(1530) == "1.53s"
