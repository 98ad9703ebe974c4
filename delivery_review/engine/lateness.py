"""Derived lateness of a work item.

Lateness is recomputed on every read: an item can become late purely because
time passed. Persisting ``late`` is the job of the reconciliation job in
``jobs.py``, never of this module.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Union

from .enums import TERMINAL_STATUSES, WorkItemStatus
from .primitives import as_utc


def is_late(
    status: Union[WorkItemStatus, str],
    deadline: Optional[datetime],
    started_at: Optional[datetime],
    allowed_duration_minutes: Optional[int],
    now: datetime,
) -> bool:
    """Return True if the work item is effectively late at ``now``.

    Rules, first match wins:
    1. completed / cancelled items are never late
    2. an explicit ``late`` status is late
    3. an active item past ``started_at + allowed_duration_minutes`` is late
    4. any item past its deadline is late
    """
    status = WorkItemStatus(status)
    now = as_utc(now)

    if status in TERMINAL_STATUSES:
        return False
    if status == WorkItemStatus.LATE:
        return True

    if (
        status == WorkItemStatus.ACTIVE
        and started_at is not None
        and allowed_duration_minutes is not None
    ):
        elapsed = now - as_utc(started_at)
        if elapsed > timedelta(minutes=allowed_duration_minutes):
            return True

    if deadline is not None and now > as_utc(deadline):
        return True

    return False


def time_remaining(
    started_at: Optional[datetime],
    allowed_duration_minutes: Optional[int],
    now: datetime,
) -> Optional[timedelta]:
    """Time left on the work timer; negative once overrun, None if untimed."""
    if started_at is None or allowed_duration_minutes is None:
        return None
    return (
        as_utc(started_at) + timedelta(minutes=allowed_duration_minutes)
    ) - as_utc(now)
