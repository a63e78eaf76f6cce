"""File change coordinator.

Turns bursts of file change events into debounced exercise runs and makes
sure only the result of the most recent run is published.

Every exercise has a generation counter that survives unwatch and re-watch.
Each dispatched run captures the next value; its report is published only
while the captured token is still the session's ``latest_token``, checked
again before every callback. Superseded runs are never interrupted, their
results are simply dropped.

Example:
    >>> coordinator = FileChangeCoordinator(runner)
    >>> coordinator.watch_exercise(exercise, presenter.present)
    >>> await coordinator.start_watching()
    >>> ...
    >>> await coordinator.stop_watching()

"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from exercise_verify.core.config import WatchConfig
from exercise_verify.core.exceptions import WatchError
from exercise_verify.core.types import Exercise, ExerciseRunReport, ExerciseStatus
from exercise_verify.runner import ExerciseRunner
from exercise_verify.watch.backoff import ReestablishBackoff
from exercise_verify.watch.primitive import WatchdogPrimitive, WatchPrimitive

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ExerciseRunReport], Awaitable[None] | None]


@dataclass(slots=True)
class WatchSession:
    """Watch state of one exercise, owned and mutated by the coordinator.

    Attributes:
        exercise: The watched exercise.
        path: Resolved path of the exercise file.
        callbacks: Subscribers notified with each published report.
        debounce_handle: Pending debounce timer, if any.
        latest_token: Token of the most recently dispatched run.
        published_token: Token of the most recently published report.
        status: Current exercise status.
        last_report: Most recently published report.

    """

    exercise: Exercise
    path: Path
    callbacks: list[ChangeCallback] = field(default_factory=list)
    debounce_handle: asyncio.TimerHandle | None = None
    latest_token: int = 0
    published_token: int = 0
    status: ExerciseStatus = ExerciseStatus.NOT_STARTED
    last_report: ExerciseRunReport | None = None

    def cancel_debounce(self) -> None:
        """Cancel the pending debounce timer, if any."""
        if self.debounce_handle is not None:
            self.debounce_handle.cancel()
            self.debounce_handle = None


class FileChangeCoordinator:
    """Debounces file changes into exercise runs and publishes fresh results.

    All session state is touched only on the event loop thread. The watch
    primitive's callbacks are marshalled onto the loop with
    ``call_soon_threadsafe``.
    """

    def __init__(
        self,
        runner: ExerciseRunner,
        primitive: WatchPrimitive | None = None,
        config: WatchConfig | None = None,
        backoff: ReestablishBackoff | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            runner: Runs one exercise and returns its report.
            primitive: File notification source, watchdog by default.
            config: Debounce and re-establish settings.
            backoff: Re-establish delay policy, derived from config by default.

        """
        self.runner = runner
        self.primitive = primitive or WatchdogPrimitive()
        self.config = config or WatchConfig()
        self.backoff = backoff or ReestablishBackoff.from_config(self.config)
        self._sessions: dict[str, WatchSession] = {}
        # Generation counters outlive sessions so a re-watch never reuses a token
        self._tokens: dict[str, int] = {}
        self._paths: dict[Path, set[str]] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._reestablish_task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False

    def __repr__(self) -> str:
        """Return a string representation of the coordinator."""
        return (
            f"FileChangeCoordinator(sessions={len(self._sessions)}, "
            f"running={self._running}, debounce_ms={self.config.debounce_ms})"
        )

    @property
    def is_running(self) -> bool:
        """Whether start_watching has been called without stop_watching."""
        return self._running

    # =========================================================================
    # Subscription
    # =========================================================================

    def watch_exercise(self, exercise: Exercise, on_change: ChangeCallback) -> None:
        """Subscribe to reports of an exercise.

        Watching is idempotent per exercise: further calls only add
        callbacks. The same callback is registered at most once.

        Args:
            exercise: Exercise to watch.
            on_change: Called (sync or async) with each published report.

        """
        session = self._sessions.get(exercise.id)
        if session is None:
            path = Path(exercise.file_path).resolve()
            token = self._tokens.get(exercise.id, 0)
            session = WatchSession(
                exercise=exercise, path=path, latest_token=token, published_token=token
            )
            self._sessions[exercise.id] = session
            ids = self._paths.setdefault(path, set())
            ids.add(exercise.id)
            if self._running and len(ids) == 1:
                self._add_path(path)
            logger.debug("Watching %s at %s", exercise.id, path)
        if on_change not in session.callbacks:
            session.callbacks.append(on_change)

    def unwatch_exercise(
        self, exercise: Exercise, on_change: ChangeCallback | None = None
    ) -> None:
        """Unsubscribe from an exercise.

        Args:
            exercise: Exercise to stop watching.
            on_change: Callback to remove; None removes all callbacks.

        """
        session = self._sessions.get(exercise.id)
        if session is None:
            return
        if on_change is None:
            session.callbacks.clear()
        elif on_change in session.callbacks:
            session.callbacks.remove(on_change)
        if session.callbacks:
            return

        session.cancel_debounce()
        # Any in-flight run for this session must not publish
        self._advance(session)
        del self._sessions[exercise.id]
        ids = self._paths.get(session.path)
        if ids is not None:
            ids.discard(exercise.id)
            if not ids:
                del self._paths[session.path]
                if self._running:
                    self.primitive.remove_path(session.path)
        logger.debug("Stopped watching %s", exercise.id)

    def watched_exercises(self) -> list[str]:
        """Ids of all watched exercises, in subscription order."""
        return list(self._sessions)

    def status(self, exercise_id: str) -> ExerciseStatus:
        """Current status of an exercise (not_started if not watched)."""
        session = self._sessions.get(exercise_id)
        return session.status if session is not None else ExerciseStatus.NOT_STARTED

    def last_report(self, exercise_id: str) -> ExerciseRunReport | None:
        """Most recently published report of an exercise, if any."""
        session = self._sessions.get(exercise_id)
        return session.last_report if session is not None else None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start_watching(self) -> None:
        """Start the watch primitive for all subscribed files.

        A primitive failure is logged and retried in the background; it is
        never raised to the caller.
        """
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        try:
            self._start_primitive()
        except WatchError as e:
            self._handle_watch_error(e)
            return
        logger.info("Watching %d exercise(s)", len(self._sessions))

    async def stop_watching(self) -> None:
        """Stop watching and discard everything in flight.

        Stops the primitive, cancels all debounce timers, and advances every
        session token so no pending run publishes.
        """
        if not self._running:
            return
        self._running = False
        self.primitive.stop()
        if self._reestablish_task is not None:
            self._reestablish_task.cancel()
            self._reestablish_task = None
        for session in self._sessions.values():
            session.cancel_debounce()
            self._advance(session)
            if session.status is ExerciseStatus.IN_PROGRESS:
                session.status = (
                    session.last_report.status
                    if session.last_report is not None
                    else ExerciseStatus.NOT_STARTED
                )
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Stopped watching")

    async def wait_idle(self) -> None:
        """Wait until all dispatched runs have finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Change handling
    # =========================================================================

    def trigger(self, exercise_id: str) -> None:
        """Inject a change for an exercise, as if its file had changed.

        Must be called on the event loop thread.

        Raises:
            KeyError: If the exercise is not watched.

        """
        self._schedule(self._sessions[exercise_id])

    def _on_primitive_event(self, path: Path) -> None:
        """Receive a change from the primitive, on any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._on_path_changed, path)
        except RuntimeError:
            logger.debug("Dropping change for %s: event loop closed", path)

    def _on_primitive_error(self, error: Exception) -> None:
        """Receive a watch failure from the primitive, on any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._handle_watch_error, error)
        except RuntimeError:
            logger.debug("Dropping watch error %s: event loop closed", error)

    def _on_path_changed(self, path: Path) -> None:
        if not self._running:
            return
        if self.config.ignore_hidden and path.name.startswith("."):
            return
        for exercise_id in sorted(self._paths.get(path, ())):
            session = self._sessions.get(exercise_id)
            if session is not None:
                self._schedule(session)

    def _schedule(self, session: WatchSession) -> None:
        """Reset the session's debounce timer."""
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        session.cancel_debounce()
        session.debounce_handle = loop.call_later(
            self.config.debounce_seconds, self._dispatch, session.exercise.id
        )
        logger.debug("Debounce reset for %s", session.exercise.id)

    def _dispatch(self, exercise_id: str) -> None:
        """Start a run once the debounce window has elapsed."""
        session = self._sessions.get(exercise_id)
        if session is None:
            return
        session.debounce_handle = None
        token = self._advance(session)
        session.status = ExerciseStatus.IN_PROGRESS
        logger.debug("Dispatching run %d for %s", token, exercise_id)

        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._run(session, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _advance(self, session: WatchSession) -> int:
        """Issue the exercise's next run token, invalidating earlier runs."""
        token = self._tokens.get(session.exercise.id, 0) + 1
        self._tokens[session.exercise.id] = token
        session.latest_token = token
        return token

    def _is_current(self, session: WatchSession, token: int) -> bool:
        return (
            self._sessions.get(session.exercise.id) is session
            and session.latest_token == token
        )

    async def _run(self, session: WatchSession, token: int) -> None:
        exercise = session.exercise
        report = await self.runner.run_exercise(exercise, run_token=token)

        if not self._is_current(session, token) or token <= session.published_token:
            logger.debug(
                "Discarding stale run %d for %s (latest %d)",
                token,
                exercise.id,
                self._tokens.get(exercise.id, 0),
            )
            return

        session.published_token = token
        session.status = report.status
        session.last_report = report
        for callback in list(session.callbacks):
            # A newer run may have started while an earlier callback was awaited
            if not self._is_current(session, token):
                logger.debug("Run %d for %s superseded while notifying", token, exercise.id)
                return
            await self._notify(callback, report)

    @staticmethod
    async def _notify(callback: ChangeCallback, report: ExerciseRunReport) -> None:
        try:
            result = callback(report)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Change callback failed for %s", report.exercise_id)

    # =========================================================================
    # Watch failures
    # =========================================================================

    def _start_primitive(self) -> None:
        for path in self._paths:
            self.primitive.add_path(path)
        self.primitive.start(self._on_primitive_event, self._on_primitive_error)

    def _add_path(self, path: Path) -> None:
        try:
            self.primitive.add_path(path)
        except WatchError as e:
            self._handle_watch_error(e)

    def _handle_watch_error(self, error: Exception) -> None:
        logger.warning("File watch failed: %s", error)
        if not self._running:
            return
        if self._reestablish_task is not None and not self._reestablish_task.done():
            return
        loop = self._loop or asyncio.get_running_loop()
        self._reestablish_task = loop.create_task(self._reestablish())

    async def _reestablish(self) -> None:
        """Restart the primitive with backoff until it succeeds or attempts run out."""
        for attempt in range(self.backoff.max_attempts):
            await asyncio.sleep(self.backoff.delay(attempt))
            if not self._running:
                return
            self.primitive.stop()
            try:
                self._start_primitive()
            except WatchError as e:
                logger.warning(
                    "Re-establishing watch failed (attempt %d/%d): %s",
                    attempt + 1,
                    self.backoff.max_attempts,
                    e,
                )
                continue
            logger.info("File watch re-established after %d attempt(s)", attempt + 1)
            return
        logger.error(
            "Giving up re-establishing file watch after %d attempts", self.backoff.max_attempts
        )
