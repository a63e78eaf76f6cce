"""Watching exercise files and re-running them on change."""

from exercise_verify.watch.backoff import ReestablishBackoff
from exercise_verify.watch.coordinator import ChangeCallback, FileChangeCoordinator, WatchSession
from exercise_verify.watch.primitive import WatchdogPrimitive, WatchPrimitive

__all__ = [
    "ChangeCallback",
    "FileChangeCoordinator",
    "ReestablishBackoff",
    "WatchPrimitive",
    "WatchSession",
    "WatchdogPrimitive",
]
