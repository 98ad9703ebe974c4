"""
Work item lifecycle state machine.

The transition table is the single source of truth for which status changes
are legal. Services consult it before issuing a compare-and-swap update, so an
illegal request fails before anything is written.

    new -> active -> (review_admin | late) -> review_client
        -> revision_requested -> active -> ... -> completed

``cancelled`` is reachable from every non-terminal state.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Union

from .enums import TERMINAL_STATUSES, WorkItemStatus
from .errors import InvalidTransition

S = WorkItemStatus

TRANSITIONS: Dict[WorkItemStatus, FrozenSet[WorkItemStatus]] = {
    S.NEW: frozenset({S.ACTIVE, S.CANCELLED}),
    S.ACTIVE: frozenset({S.REVIEW_ADMIN, S.LATE, S.CANCELLED}),
    S.LATE: frozenset({S.REVIEW_ADMIN, S.CANCELLED}),
    S.REVIEW_ADMIN: frozenset(
        {S.REVIEW_CLIENT, S.COMPLETED, S.REVISION_REQUESTED, S.CANCELLED}
    ),
    S.REVIEW_CLIENT: frozenset({S.COMPLETED, S.REVISION_REQUESTED, S.CANCELLED}),
    S.REVISION_REQUESTED: frozenset({S.ACTIVE, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Transitions that hand the item from one party to another. Collaborators are
# notified when one of these is taken.
HANDOFF_TARGETS: FrozenSet[WorkItemStatus] = frozenset(
    {
        S.REVIEW_ADMIN,
        S.REVIEW_CLIENT,
        S.REVISION_REQUESTED,
        S.COMPLETED,
        S.LATE,
        S.CANCELLED,
    }
)

StatusLike = Union[WorkItemStatus, str]


def _coerce(status: StatusLike) -> WorkItemStatus:
    return status if isinstance(status, WorkItemStatus) else WorkItemStatus(status)


def is_terminal(status: StatusLike) -> bool:
    """Return True for statuses with no outgoing transitions."""
    return _coerce(status) in TERMINAL_STATUSES


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    """Return True if ``current -> target`` is in the transition table."""
    return _coerce(target) in TRANSITIONS[_coerce(current)]


def ensure_transition(current: StatusLike, target: StatusLike) -> WorkItemStatus:
    """Validate ``current -> target`` and return the target status.

    Raises:
        InvalidTransition: if the table does not allow the move
    """
    current_status = _coerce(current)
    target_status = _coerce(target)
    if target_status not in TRANSITIONS[current_status]:
        reason = "status is terminal" if is_terminal(current_status) else None
        raise InvalidTransition(current_status.value, target_status.value, reason)
    return target_status
