"""
Periodic maintenance jobs.

``reconcile_late_items`` is the only code path that persists the ``late``
status. Reads derive lateness on the fly; this job makes it visible to
queries that filter on the stored status.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..config import Settings
from ..db.models import WorkItemModel
from .clock import Clock, SystemClock
from .enums import WorkItemStatus
from .errors import InvalidTransition
from .notifications import Notifier
from .primitives import SYSTEM_ACTOR
from .services import WorkItemService

logger = logging.getLogger(__name__)


def find_overrun_items(db: Session, clock: Clock) -> List[WorkItemModel]:
    """Active items whose work timer or deadline has run out."""
    service = WorkItemService(db, clock=clock)
    now = clock.now()
    candidates = (
        db.query(WorkItemModel)
        .filter(WorkItemModel.status == WorkItemStatus.ACTIVE.value)
        .order_by(WorkItemModel.started_at)
        .all()
    )
    return [item for item in candidates if service.evaluate_lateness(item, now)]


def reconcile_late_items(
    db: Session,
    clock: Optional[Clock] = None,
    notifier: Optional[Notifier] = None,
    settings: Optional[Settings] = None,
    dry_run: bool = False,
) -> List[str]:
    """Move every overrun active item to ``late``.

    Items that change status between the scan and the update are skipped;
    they are no longer active, so there is nothing to reconcile.

    Returns:
        IDs of the items marked late (or that would be, with ``dry_run``)
    """
    clock = clock or SystemClock()
    service = WorkItemService(db, clock=clock, notifier=notifier, settings=settings)

    marked: List[str] = []
    for item in find_overrun_items(db, clock):
        if dry_run:
            marked.append(item.id)
            continue
        try:
            service.mark_late(item.id, SYSTEM_ACTOR)
        except InvalidTransition as exc:
            logger.info("Skipped %s during late reconciliation: %s", item.id, exc)
            continue
        marked.append(item.id)

    logger.info("Late reconciliation marked %d work item(s)", len(marked))
    return marked
