"""Time sources for lateness and expiration math."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Protocol

from .primitives import as_utc, utc_now


class Clock(Protocol):
    """Anything that can tell the current UTC time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock:
    """Manually driven clock.

    Usage:
        clock = FixedClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.advance(seconds=30)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = as_utc(start) if start else utc_now()

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = as_utc(value)

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by a ``timedelta(**kwargs)``."""
        self._now = self._now + timedelta(**kwargs)
        return self._now
