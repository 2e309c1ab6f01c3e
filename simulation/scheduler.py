"""Real-time cadence of the cycle orchestrator.

The scheduler never runs a tick itself. It tracks an absolute next-fire
time on an injectable millisecond clock and reports when a tick is due.
Suspending captures the time left; resuming re-anchors the next fire at
``now + remaining`` so a pause never shortens or lengthens an interval.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

VALID_SPEEDS = (1, 2, 3)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class CycleScheduler:
    """Absolute-deadline tick timer with suspend/resume and a speed multiplier."""

    def __init__(self, interval_ms: int, clock: Clock | None = None, speed: int = 1) -> None:
        if speed not in VALID_SPEEDS:
            raise ValueError(f"Speed must be one of {VALID_SPEEDS}, got {speed}")
        self._interval_ms = interval_ms
        self._clock = clock or monotonic_ms
        self._speed = speed
        self._next_fire: float | None = None
        self._remaining: float | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin a fresh interval from now."""
        self._next_fire = self._clock() + self.effective_interval_ms
        self._remaining = None

    def stop(self) -> None:
        self._next_fire = None
        self._remaining = None

    def suspend(self) -> None:
        """Freeze the countdown. Repeated calls keep the first captured value."""
        if self._next_fire is None or self._remaining is not None:
            return
        self._remaining = max(0.0, self._next_fire - self._clock())
        logger.debug("Scheduler suspended with %.0f ms remaining", self._remaining)

    def resume(self) -> None:
        if self._remaining is None:
            return
        self._next_fire = self._clock() + self._remaining
        self._remaining = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._next_fire is not None

    @property
    def is_suspended(self) -> bool:
        return self._remaining is not None

    @property
    def speed(self) -> int:
        return self._speed

    @property
    def effective_interval_ms(self) -> float:
        return self._interval_ms / self._speed

    def countdown_ms(self) -> float:
        """Time until the next tick; frozen while suspended."""
        if self._next_fire is None:
            return 0.0
        if self._remaining is not None:
            return self._remaining
        return max(0.0, self._next_fire - self._clock())

    def is_due(self) -> bool:
        if self._next_fire is None or self._remaining is not None:
            return False
        return self._clock() >= self._next_fire

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mark_fired(self) -> None:
        """Advance the deadline by one interval; a late tick does not cause a burst."""
        if self._next_fire is None:
            return
        now = self._clock()
        self._next_fire += self.effective_interval_ms
        if self._next_fire <= now:
            self._next_fire = now + self.effective_interval_ms

    def set_speed(self, speed: int) -> None:
        """Change the multiplier and restart the current interval at the new pace."""
        if speed not in VALID_SPEEDS:
            raise ValueError(f"Speed must be one of {VALID_SPEEDS}, got {speed}")
        self._speed = speed
        if self._remaining is not None:
            self._remaining = min(self._remaining, self.effective_interval_ms)
        elif self._next_fire is not None:
            self.start()
