"""File notification primitives.

A WatchPrimitive reports changes to a set of files. Callbacks may fire on
any thread; the coordinator is responsible for marshalling them onto its
event loop. Failures to establish a watch raise WatchError; failures
detected later are reported through the ``on_error`` callback.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from exercise_verify.core.exceptions import WatchError

logger = logging.getLogger(__name__)

EventCallback = Callable[[Path], None]
ErrorCallback = Callable[[Exception], None]

# Event types that mean the file content may differ
_CHANGE_EVENTS = frozenset({"modified", "created", "moved"})


class WatchPrimitive(ABC):
    """Abstract base class for file change notification."""

    @abstractmethod
    def start(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        """Start delivering events.

        Args:
            on_event: Called with the resolved path of a changed file.
            on_error: Called when the watch fails after starting.

        Raises:
            WatchError: If the watch cannot be started.

        """

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering events. Safe to call when not started."""

    @abstractmethod
    def add_path(self, path: Path) -> None:
        """Start reporting changes to a file.

        Raises:
            WatchError: If the file's directory cannot be watched.

        """

    @abstractmethod
    def remove_path(self, path: Path) -> None:
        """Stop reporting changes to a file."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether events are being delivered."""


class _ChangeHandler(FileSystemEventHandler):
    """Forwards watchdog events for watched files."""

    def __init__(self, primitive: WatchdogPrimitive) -> None:
        self._primitive = primitive

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            if event.event_type == "deleted":
                self._primitive._directory_deleted(Path(str(event.src_path)))
            return
        if event.event_type not in _CHANGE_EVENTS:
            return
        # Editors often save by writing a temp file and renaming it over the target
        raw = event.dest_path if event.event_type == "moved" else event.src_path
        if raw:
            self._primitive._file_changed(Path(str(raw)))


class WatchdogPrimitive(WatchPrimitive):
    """WatchPrimitive backed by a watchdog Observer.

    Each watched file's parent directory is scheduled non-recursively;
    events for other files in those directories are dropped. Initial
    directory contents never produce events.
    """

    def __init__(self, observer_factory: Callable[[], BaseObserver] = Observer) -> None:
        """Initialize the primitive.

        Args:
            observer_factory: Creates the watchdog observer, replaceable in tests.

        """
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._handler = _ChangeHandler(self)
        self._lock = threading.Lock()
        self._files: set[Path] = set()
        self._watches: dict[Path, ObservedWatch] = {}
        self._on_event: EventCallback | None = None
        self._on_error: ErrorCallback | None = None

    def __repr__(self) -> str:
        """Return a string representation of the primitive."""
        return f"WatchdogPrimitive(files={len(self._files)}, running={self.is_running})"

    @property
    def is_running(self) -> bool:
        """Whether the observer thread is alive."""
        return self._observer is not None and self._observer.is_alive()

    def start(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        """Start the observer and schedule all known directories."""
        if self._observer is not None:
            return
        self._on_event = on_event
        self._on_error = on_error
        observer = self._observer_factory()
        try:
            observer.start()
        except OSError as e:
            raise WatchError(f"Cannot start file observer: {e}") from e
        self._observer = observer
        with self._lock:
            files = list(self._files)
        for path in files:
            self._schedule(path.parent)
        logger.debug("Watchdog observer started for %d files", len(files))

    def stop(self) -> None:
        """Stop the observer and forget scheduled directories."""
        observer = self._observer
        self._observer = None
        self._watches.clear()
        if observer is None:
            return
        observer.stop()
        if observer.is_alive():
            observer.join(timeout=5)
        logger.debug("Watchdog observer stopped")

    def add_path(self, path: Path) -> None:
        """Watch a file; its directory is scheduled if the observer runs."""
        path = path.resolve()
        with self._lock:
            self._files.add(path)
        if self._observer is not None:
            self._schedule(path.parent)

    def remove_path(self, path: Path) -> None:
        """Stop watching a file, unscheduling its directory when unused."""
        path = path.resolve()
        with self._lock:
            self._files.discard(path)
            still_used = any(p.parent == path.parent for p in self._files)
        if still_used:
            return
        watch = self._watches.pop(path.parent, None)
        if watch is not None and self._observer is not None:
            try:
                self._observer.unschedule(watch)
            except KeyError:
                logger.debug("Directory %s was already unscheduled", path.parent)

    def _schedule(self, directory: Path) -> None:
        if directory in self._watches or self._observer is None:
            return
        try:
            self._watches[directory] = self._observer.schedule(
                self._handler, str(directory), recursive=False
            )
        except OSError as e:
            raise WatchError(f"Cannot watch directory {directory}: {e}") from e
        logger.debug("Scheduled directory %s", directory)

    def _file_changed(self, path: Path) -> None:
        path = path.resolve()
        with self._lock:
            watched = path in self._files
        if watched and self._on_event is not None:
            self._on_event(path)

    def _directory_deleted(self, directory: Path) -> None:
        directory = directory.resolve()
        if directory in self._watches and self._on_error is not None:
            self._on_error(WatchError(f"Watched directory removed: {directory}"))
