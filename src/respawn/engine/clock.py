# src/respawn/engine/clock.py
"""Clock abstraction for testable time-dependent logic.

This module provides a Clock protocol that abstracts time access,
enabling deterministic testing of code that waits or compares against
the wall clock: launch retries and inter-application delays, heartbeat
gaps, crash windows, and checkpoint scheduling.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement; MockClock.sleep()
advances time instead of blocking.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock.

    Implementations:
    - SystemClock: real time (production)
    - MockClock: controllable time (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds, for elapsed-time measurement."""
        ...

    def now(self) -> datetime:
        """Return the current timezone-aware UTC wall-clock time."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for the given number of seconds."""
        ...


class SystemClock:
    """Production clock backed by the time and datetime modules."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class MockClock:
    """Controllable clock for deterministic testing.

    Allows tests to advance time programmatically without sleeping.
    Monotonic and wall-clock time advance together.

    Example:
        clock = MockClock(start=datetime(2024, 1, 1, 9, 0, tzinfo=UTC))
        launcher = ApplicationLauncher(..., clock=clock)

        launcher.restore_applications(processes)
        assert clock.slept == [0.5, 7.0]  # settle, inter-app delay
    """

    def __init__(self, start: datetime | None = None, monotonic_start: float = 0.0) -> None:
        """Initialize mock clock.

        Args:
            start: Initial wall-clock time (default 2024-01-01 00:00 UTC).
            monotonic_start: Initial monotonic time value.
        """
        self._now = start if start is not None else datetime(2024, 1, 1, tzinfo=UTC)
        self._monotonic = monotonic_start
        self.slept: list[float] = []

    def monotonic(self) -> float:
        return self._monotonic

    def now(self) -> datetime:
        return self._now

    def sleep(self, seconds: float) -> None:
        """Record the requested sleep and advance time by it."""
        self.slept.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._monotonic += seconds
        self._now += timedelta(seconds=seconds)

    def set(self, value: datetime) -> None:
        """Set wall-clock time to an absolute value (monotonic time is unchanged).

        Unlike advance(), this can move wall-clock time backwards.
        """
        self._now = value


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
