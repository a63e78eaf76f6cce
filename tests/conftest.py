"""Pytest configuration and fixtures for exercise-verify tests."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from exercise_verify.core.exceptions import WatchError
from exercise_verify.core.timing import reset_clock
from exercise_verify.core.types import Exercise, ExerciseRunReport, ExerciseStatus
from exercise_verify.watch.primitive import ErrorCallback, EventCallback, WatchPrimitive

TOGGLE_TODO_SOURCE = """\
import React from 'react';

const Toggle = () => { /* TODO */ };

export default Toggle;
"""

TOGGLE_DONE_SOURCE = """\
import React, { useState } from 'react';

const Toggle = () => {
  const [isOn, setIsOn] = useState(false);
  const toggle = () => setIsOn(v => !v);
  const turnOn = () => setIsOn(true);
  const turnOff = () => setIsOn(false);
  return { isOn, toggle, turnOn, turnOff };
};

export default Toggle;
"""

TOGGLE_RULES_YAML = """\
exercise: 02-render-props-to-hooks
rules:
  - id: toggle-hook
    name: useToggle hook implementation
    applies_to: Toggle
    required: [toggle, turnOn, turnOff, isOn]
    forbidden: [TODO]
    diagnostics:
      - forbidden: TODO
        message: Toggle still contains TODO
      - required: turnOn
        message: Toggle should implement turnOn
  - id: default-export
    name: Default export
    applies_to: "*"
    required: [export default]
"""


@pytest.fixture(autouse=True)
def reset_timing_clock():
    """Reset the injectable clock before and after each test."""
    reset_clock()
    yield
    reset_clock()


class FakeWatchPrimitive(WatchPrimitive):
    """In-memory WatchPrimitive driven by tests.

    Attributes:
        paths: Currently watched paths.
        start_failures: Number of upcoming start() calls that raise WatchError.
        start_calls: Number of start() calls so far.

    """

    def __init__(self, start_failures: int = 0) -> None:
        self.paths: set[Path] = set()
        self.start_failures = start_failures
        self.start_calls = 0
        self.stop_calls = 0
        self._running = False
        self._on_event: EventCallback | None = None
        self._on_error: ErrorCallback | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        self.start_calls += 1
        if self.start_failures > 0:
            self.start_failures -= 1
            raise WatchError("simulated start failure")
        self._on_event = on_event
        self._on_error = on_error
        self._running = True

    def stop(self) -> None:
        self.stop_calls += 1
        self._running = False

    def add_path(self, path: Path) -> None:
        self.paths.add(path)

    def remove_path(self, path: Path) -> None:
        self.paths.discard(path)

    def emit(self, path: Path) -> None:
        """Simulate a change notification (as the observer thread would)."""
        assert self._on_event is not None
        self._on_event(path.resolve())

    def fail(self, error: Exception) -> None:
        """Simulate an asynchronous watch failure."""
        assert self._on_error is not None
        self._running = False
        self._on_error(error)


class StubRunner:
    """Runner whose runs complete only when the test releases them.

    Each call to run_exercise records its token and waits on a per-token
    event; ``release`` finishes a run with the given status.
    """

    def __init__(self, auto_release: bool = False) -> None:
        self.auto_release = auto_release
        self.calls: list[tuple[str, int]] = []
        self._gates: dict[int, asyncio.Event] = {}
        self._statuses: dict[int, ExerciseStatus] = {}

    async def run_exercise(self, exercise: Exercise, run_token: int = 0) -> ExerciseRunReport:
        self.calls.append((exercise.id, run_token))
        if not self.auto_release:
            gate = self._gates.setdefault(run_token, asyncio.Event())
            await gate.wait()
        return ExerciseRunReport(
            exercise_id=exercise.id,
            status=self._statuses.get(run_token, ExerciseStatus.COMPLETED),
            run_token=run_token,
        )

    def release(self, run_token: int, status: ExerciseStatus = ExerciseStatus.COMPLETED) -> None:
        self._statuses[run_token] = status
        self._gates.setdefault(run_token, asyncio.Event()).set()


@pytest.fixture
def fake_primitive() -> FakeWatchPrimitive:
    """Create a fake watch primitive."""
    return FakeWatchPrimitive()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a project with config, one rule file and one exercise file."""
    (tmp_path / "rules").mkdir()
    (tmp_path / "rules" / "02-render-props-to-hooks.yaml").write_text(TOGGLE_RULES_YAML)
    exercise_dir = tmp_path / "exercise-files" / "02-render-props-to-hooks"
    exercise_dir.mkdir(parents=True)
    (exercise_dir / "exercise.tsx").write_text(TOGGLE_TODO_SOURCE)
    (tmp_path / "exercise-verify.yaml").write_text(
        """\
rules_paths: [rules]
exercises:
  - id: 02-render-props-to-hooks
    file_path: exercise-files/02-render-props-to-hooks/exercise.tsx
watch:
  debounce_ms: 10
"""
    )
    return tmp_path


@pytest.fixture
def exercise_file(project_dir: Path) -> Path:
    """Path of the sample exercise file."""
    return project_dir / "exercise-files" / "02-render-props-to-hooks" / "exercise.tsx"


@pytest.fixture
def primitive_factory():
    """Create fake watch primitives with configurable start failures."""
    return FakeWatchPrimitive


@pytest.fixture
def stub_runner() -> StubRunner:
    """Create a runner whose runs are released by the test."""
    return StubRunner()


@pytest.fixture
def toggle_todo_source() -> str:
    """Exercise source with an unimplemented Toggle."""
    return TOGGLE_TODO_SOURCE


@pytest.fixture
def toggle_done_source() -> str:
    """Exercise source with a complete Toggle."""
    return TOGGLE_DONE_SOURCE
