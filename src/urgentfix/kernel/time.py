"""
Time provider abstraction for deterministic testing

Bid timestamps (submitted_at, accepted_at, rejected_at) and expiry checks
all read the clock through this seam, so tests can freeze and advance time.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Protocol for time providers - allows deterministic testing"""

    def now(self) -> datetime:
        """Return current UTC datetime"""
        ...


class RealTimeProvider:
    """Production time provider using system clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TestTimeProvider:
    """
    Controllable time provider for deterministic tests

    Allows tests to freeze time and step it forward, e.g. past a
    bid's valid_until.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, initial_time: datetime | None = None) -> None:
        self._current_time = initial_time or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        """Set current time to specific value"""
        self._current_time = dt

    def advance(self, delta: timedelta) -> None:
        """Advance time by an arbitrary delta"""
        self._current_time += delta

    def advance_seconds(self, seconds: int) -> None:
        self.advance(timedelta(seconds=seconds))

    def advance_days(self, days: int) -> None:
        self.advance(timedelta(days=days))
