"""
Notification port.

The engine never sends email or push messages itself. After a decision or a
hand-off transition it builds a ``NotificationEvent`` and passes it to a
``Notifier`` supplied by the application. Delivery is fire-and-forget: a
failing notifier is logged and never fails the operation that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from .primitives import isoformat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    """Fields a collaborator needs to tell people what happened."""

    work_item_id: str
    actor_id: str
    event: str  # "decision" or the target status of a transition
    timestamp: datetime
    decision: Optional[str] = None
    sub_item_label: Optional[str] = None
    recipient_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "work_item_id": self.work_item_id,
            "actor_id": self.actor_id,
            "event": self.event,
            "decision": self.decision,
            "sub_item_label": self.sub_item_label,
            "recipient_id": self.recipient_id,
            "timestamp": isoformat(self.timestamp),
            "details": self.details,
        }


class Notifier(Protocol):
    def notify(self, event: NotificationEvent) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records events in the application log."""

    def notify(self, event: NotificationEvent) -> None:
        logger.info("notification %s", event.to_dict())


class RecordingNotifier:
    """Keeps events in memory. Useful for tests and dry runs."""

    def __init__(self) -> None:
        self.events: List[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)


def dispatch(notifier: Optional[Notifier], event: NotificationEvent) -> None:
    """Hand ``event`` to ``notifier`` without letting it fail the caller."""
    if notifier is None:
        return
    try:
        notifier.notify(event)
    except Exception:
        logger.exception(
            "Notifier failed for work item %s (%s)", event.work_item_id, event.event
        )
