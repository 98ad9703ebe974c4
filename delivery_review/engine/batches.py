"""
Delivery batch resolution.

A batch is "what the producer handed over for one sub-item in one round": every
delivery of that label submitted within ``window`` of the label's most recent
delivery. Batches are derived, never stored, and are anchored on the latest
delivery's timestamp rather than wall-clock time, so a batch never changes
unless a new delivery lands.

The functions here are pure. They work on any objects exposing the delivery
and feedback attributes used below (ORM rows or plain dataclasses), which lets
the resolver be tested without a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .enums import DeliveryKind, FeedbackDecision, SubItemStatus
from .primitives import as_utc

DEFAULT_BATCH_WINDOW = timedelta(seconds=120)

_DECISION_STATUS = {
    FeedbackDecision.APPROVED: SubItemStatus.APPROVED,
    FeedbackDecision.REVISION_REQUESTED: SubItemStatus.REVISION,
}


@dataclass
class DeliveryBatch:
    """Current round of deliveries for one sub-item label."""

    label: Optional[str]
    status: SubItemStatus
    deliveries: List[Any] = field(default_factory=list)
    feedback: Optional[Any] = None

    @property
    def primary(self) -> Optional[Any]:
        """The most recent delivery of the batch, used for previews."""
        return self.deliveries[-1] if self.deliveries else None

    @property
    def files(self) -> List[Any]:
        """File deliveries in submission order; empty if the primary is a link."""
        primary = self.primary
        if primary is None or _kind(primary) != DeliveryKind.FILE:
            return []
        return [d for d in self.deliveries if _kind(d) == DeliveryKind.FILE]

    @property
    def decision(self) -> Optional[FeedbackDecision]:
        if self.feedback is None:
            return None
        return FeedbackDecision(self.feedback.decision)

    @property
    def is_decided(self) -> bool:
        return self.feedback is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert batch to dictionary."""
        return {
            "label": self.label,
            "status": self.status.value,
            "decision": self.decision.value if self.decision else None,
            "primary_delivery": _as_dict(self.primary),
            "files": [_as_dict(d) for d in self.files],
            "delivery_ids": [d.id for d in self.deliveries],
            "feedback_id": self.feedback.id if self.feedback else None,
        }


def _kind(delivery: Any) -> DeliveryKind:
    return DeliveryKind(delivery.kind)


def _as_dict(obj: Any) -> Optional[Dict[str, Any]]:
    if obj is None:
        return None
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else dict(vars(obj))


def _sort_key(delivery: Any):
    return (as_utc(delivery.submitted_at), delivery.version_number)


def deliveries_for_label(deliveries: Iterable[Any], label: Optional[str]) -> List[Any]:
    """Deliveries of ``label`` ordered oldest first."""
    return sorted(
        (d for d in deliveries if d.sub_item_label == label),
        key=_sort_key,
    )


def _latest_round(ordered: Sequence[Any], window: timedelta) -> List[Any]:
    anchor = as_utc(ordered[-1].submitted_at)
    return [d for d in ordered if anchor - as_utc(d.submitted_at) <= window]


def resolve_decision(batch: Sequence[Any], feedback: Iterable[Any]) -> Optional[Any]:
    """Return the feedback governing ``batch``, or None.

    At most one decision per batch exists in normal operation. If several are
    found, the most recently reviewed one wins (ties broken by id) so the
    outcome does not depend on storage order.
    """
    delivery_ids = {d.id for d in batch}
    matches = [f for f in feedback if f.delivery_id in delivery_ids]
    if not matches:
        return None
    return max(matches, key=lambda f: (as_utc(f.reviewed_at), str(f.id)))


def resolve_batch(
    deliveries: Iterable[Any],
    feedback: Iterable[Any],
    label: Optional[str],
    window: timedelta = DEFAULT_BATCH_WINDOW,
) -> DeliveryBatch:
    """Resolve the current batch and derived status of one sub-item label."""
    ordered = deliveries_for_label(deliveries, label)
    if not ordered:
        return DeliveryBatch(label=label, status=SubItemStatus.PENDING)

    batch = _latest_round(ordered, window)
    decision = resolve_decision(batch, feedback)
    status = (
        _DECISION_STATUS[FeedbackDecision(decision.decision)]
        if decision is not None
        else SubItemStatus.DELIVERED
    )
    return DeliveryBatch(label=label, status=status, deliveries=batch, feedback=decision)


def split_rounds(
    deliveries: Iterable[Any],
    label: Optional[str],
    window: timedelta = DEFAULT_BATCH_WINDOW,
) -> List[List[Any]]:
    """Partition a label's deliveries into review rounds, newest round first.

    Each round is anchored on its own latest delivery, exactly as the current
    round is anchored on the overall latest one.
    """
    remaining = deliveries_for_label(deliveries, label)
    rounds: List[List[Any]] = []
    while remaining:
        current = _latest_round(remaining, window)
        rounds.append(current)
        remaining = remaining[: len(remaining) - len(current)]
    return rounds


def resolve_history(
    deliveries: Iterable[Any],
    feedback: Iterable[Any],
    label: Optional[str],
    window: timedelta = DEFAULT_BATCH_WINDOW,
) -> List[DeliveryBatch]:
    """All rounds of ``label`` with their own resolved status, newest first."""
    feedback = list(feedback)
    history = []
    for round_deliveries in split_rounds(deliveries, label, window):
        decision = resolve_decision(round_deliveries, feedback)
        status = (
            _DECISION_STATUS[FeedbackDecision(decision.decision)]
            if decision is not None
            else SubItemStatus.DELIVERED
        )
        history.append(
            DeliveryBatch(
                label=label,
                status=status,
                deliveries=round_deliveries,
                feedback=decision,
            )
        )
    return history


def resolve_work_item(
    manifest_labels: Sequence[Optional[str]],
    deliveries: Iterable[Any],
    feedback: Iterable[Any],
    window: timedelta = DEFAULT_BATCH_WINDOW,
) -> List[DeliveryBatch]:
    """Resolve every sub-item of a work item.

    Manifest labels come first, in manifest order. Labels that only appear on
    deliveries follow, sorted, with the whole-item (None) label last. An empty
    manifest is treated as a single whole-item sub-item.
    """
    deliveries = list(deliveries)
    feedback = list(feedback)
    labels: List[Optional[str]] = list(manifest_labels) or [None]

    extra = {d.sub_item_label for d in deliveries} - set(labels)
    labels.extend(sorted(label for label in extra if label is not None))
    if None in extra:
        labels.append(None)

    return [resolve_batch(deliveries, feedback, label, window) for label in labels]
