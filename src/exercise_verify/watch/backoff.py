"""Backoff for re-establishing a failed file watch.

Delays grow exponentially from a base, are capped, and get a random
jitter so several watchers recovering from the same outage do not retry
in lockstep.
"""

from __future__ import annotations

import logging
import random

from exercise_verify.core.config import WatchConfig

logger = logging.getLogger(__name__)

DEFAULT_JITTER_FACTOR = 0.2  # 0-20% jitter


class ReestablishBackoff:
    """Exponential backoff with cap and jitter.

    Attributes:
        max_attempts: Attempts before giving up.
        base_delay_seconds: Delay before the first attempt.
        max_delay_seconds: Cap applied before jitter.
        jitter_factor: Random jitter factor (0.0-1.0).

    Example:
        >>> backoff = ReestablishBackoff(base_delay_seconds=0.5, max_delay_seconds=10.0)
        >>> backoff.delay(0)  # ~0.5-0.6s
        >>> backoff.delay(3)  # ~4.0-4.8s

    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 10.0,
        jitter_factor: float = DEFAULT_JITTER_FACTOR,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the backoff.

        Args:
            max_attempts: Attempts before giving up.
            base_delay_seconds: Delay before the first attempt.
            max_delay_seconds: Cap applied before jitter.
            jitter_factor: Random jitter factor (0.0-1.0).
            rng: Random source, for deterministic tests.

        """
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.jitter_factor = jitter_factor
        self._rng = rng or random.Random()

    def __repr__(self) -> str:
        """Return a string representation of the backoff."""
        return (
            f"ReestablishBackoff(attempts={self.max_attempts}, "
            f"base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"jitter={self.jitter_factor})"
        )

    @classmethod
    def from_config(cls, config: WatchConfig, rng: random.Random | None = None) -> ReestablishBackoff:
        """Create a backoff from watch configuration."""
        return cls(
            max_attempts=config.max_reestablish_attempts,
            base_delay_seconds=config.reestablish_base_delay_seconds,
            max_delay_seconds=config.reestablish_max_delay_seconds,
            rng=rng,
        )

    def delay(self, attempt: int) -> float:
        """Calculate the delay before a zero-based attempt.

        Formula: min(base * 2^attempt, max) * (1 + random(0, jitter_factor))
        """
        capped = min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)
        jitter = self._rng.uniform(0, self.jitter_factor)
        final_delay = capped * (1 + jitter)
        logger.debug(
            "Backoff calculation: attempt=%d, capped=%.2f, jitter=%.2f, final=%.2f",
            attempt,
            capped,
            jitter,
            final_delay,
        )
        return final_delay
