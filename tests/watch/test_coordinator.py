"""Tests for FileChangeCoordinator.

The coordinator is driven through a fake watch primitive and a runner
whose runs finish only when the test releases them, so interleavings of
changes and completions are deterministic.
"""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path

import pytest

from exercise_verify.core.config import WatchConfig
from exercise_verify.core.exceptions import WatchError
from exercise_verify.core.types import Exercise, ExerciseRunReport, ExerciseStatus
from exercise_verify.watch import FileChangeCoordinator, ReestablishBackoff

DEBOUNCE = 0.02
SETTLE = 0.1


@pytest.fixture
def exercise(tmp_path: Path) -> Exercise:
    """An exercise whose file exists."""
    path = tmp_path / "exercise.tsx"
    path.write_text("const Toggle = () => {};")
    return Exercise(id="ex", file_path=path)


@pytest.fixture
def fast_backoff() -> ReestablishBackoff:
    """Backoff with millisecond delays."""
    return ReestablishBackoff(
        max_attempts=3, base_delay_seconds=0.001, max_delay_seconds=0.005, rng=random.Random(0)
    )


@pytest.fixture
def coordinator(stub_runner, fake_primitive, fast_backoff) -> FileChangeCoordinator:
    """Coordinator with a 20ms debounce window."""
    return FileChangeCoordinator(
        stub_runner, fake_primitive, WatchConfig(debounce_ms=20), backoff=fast_backoff
    )


class Recorder:
    """Collects published reports."""

    def __init__(self) -> None:
        self.reports: list[ExerciseRunReport] = []

    def __call__(self, report: ExerciseRunReport) -> None:
        self.reports.append(report)

    @property
    def tokens(self) -> list[int]:
        return [r.run_token for r in self.reports]


class TestDebounce:
    """Bursts of changes coalesce into one run."""

    @pytest.mark.asyncio
    async def test_burst_coalesces_into_one_run(
        self, coordinator, fake_primitive, stub_runner, exercise
    ) -> None:
        # GIVEN a watched exercise
        recorder = Recorder()
        coordinator.watch_exercise(exercise, recorder)
        await coordinator.start_watching()

        # WHEN three changes arrive within the debounce window
        for _ in range(3):
            fake_primitive.emit(exercise.file_path)
            await asyncio.sleep(DEBOUNCE / 4)
        await asyncio.sleep(SETTLE)

        # THEN exactly one run is dispatched
        assert stub_runner.calls == [("ex", 1)]
        assert coordinator.status("ex") is ExerciseStatus.IN_PROGRESS

        stub_runner.release(1, ExerciseStatus.FAILED)
        await coordinator.wait_idle()

        assert recorder.tokens == [1]
        assert coordinator.status("ex") is ExerciseStatus.FAILED
        assert coordinator.last_report("ex") is recorder.reports[0]
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_initial_state(self, coordinator, exercise) -> None:
        """A watched exercise that never ran is not_started."""
        coordinator.watch_exercise(exercise, Recorder())
        assert coordinator.status("ex") is ExerciseStatus.NOT_STARTED
        assert coordinator.status("unknown") is ExerciseStatus.NOT_STARTED
        assert coordinator.last_report("ex") is None

    @pytest.mark.asyncio
    async def test_hidden_files_ignored(self, coordinator, fake_primitive, stub_runner, tmp_path) -> None:
        path = tmp_path / ".exercise.tsx"
        path.write_text("")
        coordinator.watch_exercise(Exercise(id="hidden", file_path=path), Recorder())
        await coordinator.start_watching()

        fake_primitive.emit(path)
        await asyncio.sleep(SETTLE)

        assert stub_runner.calls == []
        await coordinator.stop_watching()


class TestStaleRuns:
    """Only the latest run publishes."""

    @pytest.mark.asyncio
    async def test_superseded_run_is_discarded(self, coordinator, stub_runner, exercise) -> None:
        # GIVEN run 1 in flight
        recorder = Recorder()
        coordinator.watch_exercise(exercise, recorder)
        await coordinator.start_watching()
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)

        # WHEN another change dispatches run 2 and run 1 finishes last
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)
        stub_runner.release(2)
        await asyncio.sleep(0)
        stub_runner.release(1, ExerciseStatus.FAILED)
        await coordinator.wait_idle()

        # THEN only run 2 is published
        assert [token for _, token in stub_runner.calls] == [1, 2]
        assert recorder.tokens == [2]
        assert coordinator.status("ex") is ExerciseStatus.COMPLETED
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_published_tokens_increase(self, coordinator, stub_runner, exercise) -> None:
        stub_runner.auto_release = True
        recorder = Recorder()
        coordinator.watch_exercise(exercise, recorder)
        await coordinator.start_watching()

        for _ in range(3):
            coordinator.trigger("ex")
            await asyncio.sleep(SETTLE)
            await coordinator.wait_idle()

        assert recorder.tokens == [1, 2, 3]
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_unwatched_session_does_not_publish(self, coordinator, stub_runner, exercise) -> None:
        recorder = Recorder()
        coordinator.watch_exercise(exercise, recorder)
        await coordinator.start_watching()
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)

        coordinator.unwatch_exercise(exercise)
        stub_runner.release(1)
        await coordinator.wait_idle()

        assert recorder.reports == []
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_rewatch_does_not_reuse_tokens(self, coordinator, stub_runner, exercise) -> None:
        # GIVEN run 1 in flight when the exercise is unwatched and watched again
        first = Recorder()
        coordinator.watch_exercise(exercise, first)
        await coordinator.start_watching()
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)
        coordinator.unwatch_exercise(exercise)
        second = Recorder()
        coordinator.watch_exercise(exercise, second)

        # WHEN the new session dispatches a run and the old run finishes first
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)
        stub_runner.release(1, ExerciseStatus.FAILED)
        await asyncio.sleep(0)
        stub_runner.release(3)
        await coordinator.wait_idle()

        # THEN the new run has a fresh token and only it is published
        assert [token for _, token in stub_runner.calls] == [1, 3]
        assert first.reports == []
        assert second.tokens == [3]
        assert coordinator.status("ex") is ExerciseStatus.COMPLETED
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_newer_run_stops_delivery_of_older_report(
        self, coordinator, stub_runner, exercise
    ) -> None:
        # GIVEN a slow async callback registered before a sync one
        stub_runner.auto_release = True
        gate = asyncio.Event()
        slow_tokens: list[int] = []
        fast = Recorder()

        async def slow(report: ExerciseRunReport) -> None:
            slow_tokens.append(report.run_token)
            if report.run_token == 1:
                await gate.wait()

        coordinator.watch_exercise(exercise, slow)
        coordinator.watch_exercise(exercise, fast)
        await coordinator.start_watching()

        # WHEN run 2 is published while run 1 is still notifying the slow callback
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)
        gate.set()
        await coordinator.wait_idle()

        # THEN the remaining callback never receives the superseded report
        assert slow_tokens == [1, 2]
        assert fast.tokens == [2]
        assert coordinator.last_report("ex").run_token == 2
        await coordinator.stop_watching()


class TestStopWatching:
    """stop_watching discards everything pending."""

    @pytest.mark.asyncio
    async def test_stop_cancels_debounce_timers(
        self, coordinator, fake_primitive, stub_runner, exercise
    ) -> None:
        coordinator.watch_exercise(exercise, Recorder())
        await coordinator.start_watching()
        coordinator.trigger("ex")

        await coordinator.stop_watching()
        await asyncio.sleep(SETTLE)

        assert stub_runner.calls == []
        assert not fake_primitive.is_running
        assert not coordinator.is_running

    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_run(self, coordinator, stub_runner, exercise) -> None:
        recorder = Recorder()
        coordinator.watch_exercise(exercise, recorder)
        await coordinator.start_watching()
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)

        await coordinator.stop_watching()
        stub_runner.release(1)
        await asyncio.sleep(0)

        assert recorder.reports == []
        assert coordinator.status("ex") is ExerciseStatus.NOT_STARTED

    @pytest.mark.asyncio
    async def test_changes_after_stop_ignored(
        self, coordinator, fake_primitive, stub_runner, exercise
    ) -> None:
        coordinator.watch_exercise(exercise, Recorder())
        await coordinator.start_watching()
        await coordinator.stop_watching()

        fake_primitive.emit(exercise.file_path)
        await asyncio.sleep(SETTLE)

        assert stub_runner.calls == []


class TestCallbacks:
    """Subscription management and callback isolation."""

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_affect_others(
        self, coordinator, stub_runner, exercise, caplog: pytest.LogCaptureFixture
    ) -> None:
        stub_runner.auto_release = True

        def broken(report: ExerciseRunReport) -> None:
            raise RuntimeError("presenter exploded")

        recorder = Recorder()
        coordinator.watch_exercise(exercise, broken)
        coordinator.watch_exercise(exercise, recorder)
        await coordinator.start_watching()

        with caplog.at_level(logging.ERROR):
            coordinator.trigger("ex")
            await asyncio.sleep(SETTLE)
            await coordinator.wait_idle()

        assert recorder.tokens == [1]
        assert "Change callback failed" in caplog.text
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_async_callback(self, coordinator, stub_runner, exercise) -> None:
        stub_runner.auto_release = True
        received: list[int] = []

        async def on_change(report: ExerciseRunReport) -> None:
            await asyncio.sleep(0)
            received.append(report.run_token)

        coordinator.watch_exercise(exercise, on_change)
        await coordinator.start_watching()
        coordinator.trigger("ex")
        await asyncio.sleep(SETTLE)
        await coordinator.wait_idle()

        assert received == [1]
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_unwatch_single_callback_keeps_session(
        self, coordinator, fake_primitive, exercise
    ) -> None:
        first, second = Recorder(), Recorder()
        coordinator.watch_exercise(exercise, first)
        coordinator.watch_exercise(exercise, second)
        await coordinator.start_watching()

        coordinator.unwatch_exercise(exercise, first)
        assert coordinator.watched_exercises() == ["ex"]

        coordinator.unwatch_exercise(exercise, second)
        assert coordinator.watched_exercises() == []
        assert fake_primitive.paths == set()
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_watch_is_idempotent(self, coordinator, fake_primitive, exercise) -> None:
        recorder = Recorder()
        coordinator.watch_exercise(exercise, recorder)
        coordinator.watch_exercise(exercise, recorder)
        await coordinator.start_watching()

        assert fake_primitive.paths == {exercise.file_path.resolve()}
        coordinator.unwatch_exercise(exercise, recorder)
        assert coordinator.watched_exercises() == []
        await coordinator.stop_watching()

    def test_trigger_unknown_exercise(self, coordinator) -> None:
        with pytest.raises(KeyError):
            coordinator.trigger("nope")


class TestWatchFailures:
    """Watch failures are logged and re-established, never raised."""

    @pytest.mark.asyncio
    async def test_start_failure_is_reestablished(
        self, stub_runner, primitive_factory, fast_backoff, exercise
    ) -> None:
        primitive = primitive_factory(start_failures=2)
        coordinator = FileChangeCoordinator(
            stub_runner, primitive, WatchConfig(debounce_ms=20), backoff=fast_backoff
        )
        coordinator.watch_exercise(exercise, Recorder())

        await coordinator.start_watching()
        await asyncio.sleep(SETTLE)

        assert primitive.start_calls == 3
        assert primitive.is_running
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_asynchronous_failure_is_reestablished(
        self, coordinator, fake_primitive, stub_runner, exercise
    ) -> None:
        coordinator.watch_exercise(exercise, Recorder())
        await coordinator.start_watching()

        fake_primitive.fail(WatchError("directory removed"))
        await asyncio.sleep(SETTLE)

        assert fake_primitive.start_calls == 2
        assert fake_primitive.is_running
        fake_primitive.emit(exercise.file_path)
        await asyncio.sleep(SETTLE)
        assert stub_runner.calls == [("ex", 1)]
        await coordinator.stop_watching()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self, stub_runner, primitive_factory, fast_backoff, exercise, caplog: pytest.LogCaptureFixture
    ) -> None:
        primitive = primitive_factory(start_failures=100)
        coordinator = FileChangeCoordinator(
            stub_runner, primitive, WatchConfig(debounce_ms=20), backoff=fast_backoff
        )
        coordinator.watch_exercise(exercise, Recorder())

        with caplog.at_level(logging.WARNING):
            await coordinator.start_watching()
            await asyncio.sleep(SETTLE)

        assert primitive.start_calls == 1 + fast_backoff.max_attempts
        assert "Giving up" in caplog.text
        await coordinator.stop_watching()
