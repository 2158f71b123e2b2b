"""
Time source abstraction.

Every expiry comparison in the subscription lifecycle asks a Clock for
"now" instead of calling datetime.now() directly, so trial and overlay
expiry can be tested deterministically.

Usage:
    from backoffice.platform.clock import SystemClock, FixedClock

    clock = FixedClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
    clock.advance(days=15)
"""

from datetime import datetime, timedelta, timezone
from threading import Lock


class Clock:
    """Interface for a UTC time source."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """
    Manually controlled clock for tests and replays.

    Naive datetimes are interpreted as UTC.
    """

    def __init__(self, at: datetime):
        self._lock = Lock()
        self._now = _as_utc(at)

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, at: datetime) -> None:
        with self._lock:
            self._now = _as_utc(at)

    def advance(self, **delta) -> datetime:
        """Move the clock forward by a timedelta(**delta) and return the new time."""
        with self._lock:
            self._now = self._now + timedelta(**delta)
            return self._now


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


_default_clock = SystemClock()


def get_clock() -> Clock:
    """Return the process-wide default clock."""
    return _default_clock
