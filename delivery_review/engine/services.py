"""
Lifecycle Engine Service Layer.

Database operations for work items, deliveries, feedback and review links,
with the lifecycle rules applied. Every public state-changing operation is one
transaction: it either commits fully (including its audit entries) or raises
and leaves storage untouched.

Concurrency:
- status changes are compare-and-swap updates keyed on the expected status,
  so of two racing callers exactly one wins
- review link views are counted with a single conditional UPDATE, so
  concurrent resolves never lose an increment
- batches are recomputed from storage on every read
"""

from __future__ import annotations

import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import delete as sql_delete
from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.models import DeliveryModel, FeedbackModel, ReviewLinkModel, WorkItemModel
from .batches import DeliveryBatch, resolve_batch, resolve_history, resolve_work_item
from .clock import Clock, SystemClock
from .delivery import DeliveryCreate
from .enums import (
    TERMINAL_STATUSES,
    ActorRole,
    FeedbackDecision,
    SubItemStatus,
    WorkItemKind,
    WorkItemStatus,
)
from .errors import (
    AlreadyDecided,
    EmptyFeedback,
    InvalidLink,
    InvalidTransition,
    NotAssignee,
    NotFound,
    StorageUnavailable,
)
from .feedback import Attachments, BatchRef
from .lateness import is_late, time_remaining
from .notifications import NotificationEvent, Notifier, dispatch
from .primitives import SYSTEM_ACTOR, Actor, as_utc, generate_ulid
from .review_link import ReviewTarget
from .state_machine import HANDOFF_TARGETS, ensure_transition
from .work_item import WorkItemCreate

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (OperationalError, DisconnectionError, PoolTimeoutError)

# Statuses in which a producer may hand over new deliveries
_SUBMITTABLE = frozenset(
    {
        WorkItemStatus.ACTIVE,
        WorkItemStatus.LATE,
        WorkItemStatus.REVIEW_ADMIN,
        WorkItemStatus.REVIEW_CLIENT,
        WorkItemStatus.REVISION_REQUESTED,
    }
)

_REVIEW_STATUSES = frozenset({WorkItemStatus.REVIEW_ADMIN, WorkItemStatus.REVIEW_CLIENT})

# Parties told about a hand-off: None lets the collaborator pick reviewers
_PRODUCER_FACING = frozenset(
    {WorkItemStatus.REVISION_REQUESTED, WorkItemStatus.LATE, WorkItemStatus.CANCELLED}
)


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit on success, roll back on any error.

    Transient storage failures are re-raised as StorageUnavailable.
    """
    try:
        yield db
        db.commit()
    except _STORAGE_ERRORS as exc:
        db.rollback()
        logger.warning("Storage failure, transaction rolled back: %s", exc)
        raise StorageUnavailable() from exc
    except Exception:
        db.rollback()
        raise


class _EngineService:
    """Shared wiring for engine services."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        audit: Optional[AuditService] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.audit = audit or AuditService(db)
        self.notifier = notifier
        self.settings = settings or get_settings()

    def _wiring(self) -> Dict[str, Any]:
        return {
            "clock": self.clock,
            "audit": self.audit,
            "notifier": self.notifier,
            "settings": self.settings,
        }

    def _get_work_item(self, work_item_id: str) -> WorkItemModel:
        item = self.db.get(WorkItemModel, work_item_id)
        if item is None:
            raise NotFound("WorkItem", work_item_id)
        return item


class WorkItemService(_EngineService):
    """Work item store and lifecycle state machine."""

    def create(
        self,
        data: WorkItemCreate,
        actor: Actor,
        trace_id: Optional[str] = None,
    ) -> WorkItemModel:
        """Create a new WorkItem in status ``new``."""
        now = self.clock.now()
        allowed = data.allowed_duration_minutes
        if allowed is None and data.kind == WorkItemKind.VIDEO:
            allowed = self.settings.default_video_duration_minutes

        item = WorkItemModel(
            id=generate_ulid(),
            kind=data.kind.value,
            trace_id=trace_id,
            title=data.title,
            description=data.description,
            assigned_to=data.assigned_to,
            created_by=actor.actor_id,
            status=WorkItemStatus.NEW.value,
            deadline=as_utc(data.deadline),
            allowed_duration_minutes=allowed,
            revision_count=0,
            completed_sub_items=0,
            requires_client_review=data.requires_client_review,
            manifest=[sub.model_dump(exclude_none=True) for sub in data.resolved_manifest()],
            meta=data.meta,
            created_at=now,
            updated_at=now,
        )

        with unit_of_work(self.db):
            self.db.add(item)
            self.db.flush()
            self.audit.log_create(
                entity_kind="WorkItem",
                entity_id=item.id,
                after=item.to_dict(),
                actor=actor,
                trace_id=trace_id,
                ts=now,
            )

        self.db.refresh(item)
        logger.info("Created work item %s (%d sub-items)", item.id, len(item.manifest))
        return item

    def get(self, work_item_id: str) -> Optional[WorkItemModel]:
        """Get a WorkItem by ID."""
        return self.db.get(WorkItemModel, work_item_id)

    def require(self, work_item_id: str) -> WorkItemModel:
        """Get a WorkItem by ID or raise NotFound."""
        return self._get_work_item(work_item_id)

    def list(
        self,
        status: Optional[str] = None,
        assigned_to: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[WorkItemModel]:
        """List WorkItems with optional filtering."""
        query = self.db.query(WorkItemModel)

        if status:
            query = query.filter(WorkItemModel.status == status)
        if assigned_to:
            query = query.filter(WorkItemModel.assigned_to == assigned_to)

        return (
            query.order_by(desc(WorkItemModel.created_at), desc(WorkItemModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def delete(self, work_item_id: str, actor: Actor) -> None:
        """Delete a WorkItem with its deliveries, feedback and review links."""
        item = self._get_work_item(work_item_id)
        before = item.to_dict()
        trace_id = item.trace_id
        with unit_of_work(self.db):
            # Children first, feedback references both deliveries and links
            for model in (FeedbackModel, ReviewLinkModel, DeliveryModel):
                self.db.execute(
                    sql_delete(model)
                    .where(model.work_item_id == work_item_id)
                    .execution_options(synchronize_session=False)
                )
            self.db.delete(item)
            self.audit.log_delete(
                entity_kind="WorkItem",
                entity_id=work_item_id,
                before=before,
                actor=actor,
                trace_id=trace_id,
                ts=self.clock.now(),
            )
        logger.info("Deleted work item %s", work_item_id)

    # Lateness

    def is_late(self, work_item_id: str, now: Optional[datetime] = None) -> bool:
        """Derived lateness of a work item at ``now`` (defaults to the clock)."""
        item = self._get_work_item(work_item_id)
        return self.evaluate_lateness(item, now)

    def evaluate_lateness(self, item: WorkItemModel, now: Optional[datetime] = None) -> bool:
        return is_late(
            item.status,
            item.deadline,
            item.started_at,
            item.allowed_duration_minutes,
            now or self.clock.now(),
        )

    def view(self, item: WorkItemModel, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Representation of a work item with its derived lateness."""
        now = now or self.clock.now()
        remaining = time_remaining(item.started_at, item.allowed_duration_minutes, now)
        data = item.to_dict()
        data["is_late"] = self.evaluate_lateness(item, now)
        data["time_remaining_seconds"] = (
            int(remaining.total_seconds())
            if remaining is not None and item.status == WorkItemStatus.ACTIVE.value
            else None
        )
        return data

    # Lifecycle transitions

    def _move(
        self,
        item: WorkItemModel,
        target: WorkItemStatus,
        actor: Actor,
        values: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
    ) -> Optional[NotificationEvent]:
        """Compare-and-swap ``item`` to ``target`` inside the open transaction.

        Returns the notification to send once the transaction commits, if the
        transition hands the item to another party.
        """
        current = WorkItemStatus(item.status)
        ensure_transition(current, target)
        now = self.clock.now()

        stmt = (
            update(WorkItemModel)
            .where(
                WorkItemModel.id == item.id,
                WorkItemModel.status == current.value,
            )
            .values(status=target.value, updated_at=now, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            latest = self.db.execute(
                select(WorkItemModel.status).where(WorkItemModel.id == item.id)
            ).scalar_one_or_none()
            logger.info(
                "Lost transition race on %s: expected %s, found %s",
                item.id,
                current.value,
                latest,
            )
            raise InvalidTransition(
                latest or current.value,
                target.value,
                "status changed concurrently",
            )

        self.audit.log_status_change(
            entity_kind="WorkItem",
            entity_id=item.id,
            old_status=current.value,
            new_status=target.value,
            actor=actor,
            note=note,
            trace_id=item.trace_id,
            ts=now,
        )

        if target not in HANDOFF_TARGETS:
            return None
        return NotificationEvent(
            work_item_id=item.id,
            actor_id=actor.actor_id,
            event=target.value,
            timestamp=now,
            recipient_id=item.assigned_to if target in _PRODUCER_FACING else None,
            details={"from": current.value},
        )

    def _transition(
        self,
        work_item_id: str,
        target: WorkItemStatus,
        actor: Actor,
        values: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
        precheck=None,
    ) -> WorkItemModel:
        item = self._get_work_item(work_item_id)
        with unit_of_work(self.db):
            if precheck is not None:
                precheck(item)
            event = self._move(item, target, actor, values, note)
        self.db.refresh(item)
        if event is not None:
            dispatch(self.notifier, event)
        return item

    def start(self, work_item_id: str, actor: Actor) -> WorkItemModel:
        """``new -> active``: the assignee starts work and the timer runs."""

        def check(item: WorkItemModel) -> None:
            if item.status != WorkItemStatus.NEW.value:
                ensure_transition(item.status, WorkItemStatus.ACTIVE)
                raise InvalidTransition(
                    item.status, WorkItemStatus.ACTIVE.value, "work already started"
                )
            if not item.assigned_to or item.assigned_to != actor.actor_id:
                raise NotAssignee(item.id, actor.actor_id)

        return self._transition(
            work_item_id,
            WorkItemStatus.ACTIVE,
            actor,
            values={"started_at": self.clock.now()},
            precheck=check,
        )

    def submit_for_review(self, work_item_id: str, actor: Actor) -> WorkItemModel:
        """``active|late -> review_admin``: needs a delivery made since the timer started."""

        def check(item: WorkItemModel) -> None:
            ensure_transition(item.status, WorkItemStatus.REVIEW_ADMIN)
            started_at = as_utc(item.started_at)
            submitted = [
                as_utc(ts)
                for (ts,) in self.db.query(DeliveryModel.submitted_at).filter(
                    DeliveryModel.work_item_id == item.id
                )
            ]
            if not any(started_at is None or ts >= started_at for ts in submitted):
                raise InvalidTransition(
                    item.status,
                    WorkItemStatus.REVIEW_ADMIN.value,
                    "no delivery submitted since work started",
                )

        return self._transition(
            work_item_id, WorkItemStatus.REVIEW_ADMIN, actor, precheck=check
        )

    def admin_review(
        self,
        work_item_id: str,
        approve: bool,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> WorkItemModel:
        """Internal review of a submitted item.

        Approval forwards to the client, or completes the item directly when
        it does not require client review. Rejection sends it back for
        revision and counts one revision.
        """
        item = self._get_work_item(work_item_id)
        values: Dict[str, Any] = {}
        if not approve:
            target = WorkItemStatus.REVISION_REQUESTED
            values["revision_count"] = WorkItemModel.revision_count + 1
        elif item.requires_client_review:
            target = WorkItemStatus.REVIEW_CLIENT
        else:
            target = WorkItemStatus.COMPLETED
            values["completed_at"] = self.clock.now()

        def check(current: WorkItemModel) -> None:
            if current.status != WorkItemStatus.REVIEW_ADMIN.value:
                raise InvalidTransition(
                    current.status, target.value, "not awaiting internal review"
                )

        return self._transition(
            work_item_id, target, actor, values=values, note=notes, precheck=check
        )

    def acknowledge_revision(self, work_item_id: str, actor: Actor) -> WorkItemModel:
        """``revision_requested -> active``: the producer restarts the timer."""

        def check(item: WorkItemModel) -> None:
            if item.status != WorkItemStatus.REVISION_REQUESTED.value:
                raise InvalidTransition(
                    item.status, WorkItemStatus.ACTIVE.value, "no revision requested"
                )

        return self._transition(
            work_item_id,
            WorkItemStatus.ACTIVE,
            actor,
            values={"started_at": self.clock.now()},
            note="Revision acknowledged",
            precheck=check,
        )

    def cancel(
        self, work_item_id: str, actor: Actor, reason: Optional[str] = None
    ) -> WorkItemModel:
        """Cancel a non-terminal work item. Terminal."""
        return self._transition(
            work_item_id, WorkItemStatus.CANCELLED, actor, note=reason
        )

    def mark_late(self, work_item_id: str, actor: Actor = SYSTEM_ACTOR) -> WorkItemModel:
        """``active -> late``. Only the reconciliation job persists lateness."""
        return self._transition(
            work_item_id, WorkItemStatus.LATE, actor, note="Work timer overrun"
        )


class DeliveryService(_EngineService):
    """Delivery store. Deliveries are immutable once created."""

    def submit(
        self,
        work_item_id: str,
        data: DeliveryCreate,
        trace_id: Optional[str] = None,
    ) -> DeliveryModel:
        """Record a new delivery under the next version number.

        A retry carrying the same idempotency key returns the original
        delivery instead of creating a second one.
        """
        item = self._get_work_item(work_item_id)
        if WorkItemStatus(item.status) not in _SUBMITTABLE:
            raise InvalidTransition(
                item.status, "delivered", "work item does not accept deliveries"
            )

        existing = self._find_by_idempotency_key(item.id, data)
        if existing is not None:
            logger.info("Duplicate submission %s for %s", data.idempotency_key, item.id)
            return existing

        for attempt in range(1, self.settings.version_retry_attempts + 1):
            now = self.clock.now()
            delivery = DeliveryModel(
                id=generate_ulid(),
                work_item_id=item.id,
                sub_item_label=data.sub_item_label,
                kind=data.kind.value,
                payload_ref=data.payload_ref,
                link_type=data.link_type.value if data.link_type else None,
                notes=data.notes,
                submitted_by=data.actor.actor_id,
                submitted_at=now,
                version_number=self._next_version(item.id),
                idempotency_key=data.idempotency_key,
            )
            try:
                with unit_of_work(self.db):
                    self.db.add(delivery)
                    self.db.flush()
                    self.audit.log_create(
                        entity_kind="Delivery",
                        entity_id=delivery.id,
                        after=delivery.to_dict(),
                        actor=data.actor,
                        trace_id=trace_id or item.trace_id,
                        ts=now,
                    )
            except IntegrityError:
                existing = self._find_by_idempotency_key(item.id, data)
                if existing is not None:
                    return existing
                logger.info(
                    "Version collision on %s (attempt %d), retrying", item.id, attempt
                )
                continue

            self.db.refresh(delivery)
            logger.info(
                "Delivery v%d for %s [%s]",
                delivery.version_number,
                item.id,
                delivery.sub_item_label or "whole item",
            )
            return delivery

        raise StorageUnavailable("Could not allocate a delivery version number")

    def _next_version(self, work_item_id: str) -> int:
        current = (
            self.db.query(func.max(DeliveryModel.version_number))
            .filter(DeliveryModel.work_item_id == work_item_id)
            .scalar()
        )
        return (current or 0) + 1

    def _find_by_idempotency_key(
        self, work_item_id: str, data: DeliveryCreate
    ) -> Optional[DeliveryModel]:
        if not data.idempotency_key:
            return None
        query = self.db.query(DeliveryModel).filter(
            DeliveryModel.work_item_id == work_item_id,
            DeliveryModel.idempotency_key == data.idempotency_key,
        )
        if data.sub_item_label is None:
            query = query.filter(DeliveryModel.sub_item_label.is_(None))
        else:
            query = query.filter(DeliveryModel.sub_item_label == data.sub_item_label)
        return query.first()

    def get(self, delivery_id: str) -> Optional[DeliveryModel]:
        """Get a Delivery by ID."""
        return self.db.get(DeliveryModel, delivery_id)

    def list_for_work_item(self, work_item_id: str) -> List[DeliveryModel]:
        """All deliveries of a work item, newest version first."""
        return (
            self.db.query(DeliveryModel)
            .filter(DeliveryModel.work_item_id == work_item_id)
            .order_by(desc(DeliveryModel.version_number))
            .all()
        )


class BatchService(_EngineService):
    """Read-only batch resolution. Recomputed from storage on every call."""

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.settings.batch_window_seconds)

    def _load(self, work_item_id: str):
        deliveries = (
            self.db.query(DeliveryModel)
            .filter(DeliveryModel.work_item_id == work_item_id)
            .all()
        )
        feedback = (
            self.db.query(FeedbackModel)
            .filter(FeedbackModel.work_item_id == work_item_id)
            .all()
        )
        return deliveries, feedback

    def get_batches(self, work_item_id: str) -> List[DeliveryBatch]:
        """Current batch and derived status of every sub-item."""
        item = self._get_work_item(work_item_id)
        deliveries, feedback = self._load(item.id)
        return resolve_work_item(item.sub_item_labels, deliveries, feedback, self.window)

    def get_batch(self, work_item_id: str, label: Optional[str]) -> DeliveryBatch:
        """Current batch of one sub-item."""
        item = self._get_work_item(work_item_id)
        deliveries, feedback = self._load(item.id)
        return resolve_batch(deliveries, feedback, label, self.window)

    def history(self, work_item_id: str, label: Optional[str]) -> List[DeliveryBatch]:
        """Every review round of one sub-item, newest first."""
        item = self._get_work_item(work_item_id)
        deliveries, feedback = self._load(item.id)
        return resolve_history(deliveries, feedback, label, self.window)


@dataclass
class DecisionResult:
    """Outcome of applying a decision, with what collaborators need to know."""

    feedback: FeedbackModel
    work_item: WorkItemModel
    notifications: List[NotificationEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feedback": self.feedback.to_dict(),
            "work_item": self.work_item.to_dict(),
            "notifications": [event.to_dict() for event in self.notifications],
        }


class FeedbackService(_EngineService):
    """Applies reviewer decisions to delivery batches."""

    def apply_decision(
        self,
        batch_ref: BatchRef,
        decision: FeedbackDecision,
        actor: Actor,
        notes: Optional[str] = None,
        attachments: Optional[Attachments] = None,
        feedback_text: Optional[str] = None,
        rating: Optional[int] = None,
        reviewer_name: Optional[str] = None,
        review_link_id: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> DecisionResult:
        """Record a decision on the current batch of ``batch_ref``.

        Raises:
            EmptyFeedback: revision request without notes or attachments
            NotFound: unknown work item / link, or the label has no deliveries
            InvalidLink: a delivery link whose delivery is not in the current round
            AlreadyDecided: the batch already carries a decision
            InvalidTransition: the work item is completed or cancelled
        """
        decision = FeedbackDecision(decision)
        notes = notes.strip() if notes else None
        has_attachments = attachments is not None and not attachments.is_empty
        if decision == FeedbackDecision.REVISION_REQUESTED and not notes and not has_attachments:
            raise EmptyFeedback()

        item = self._get_work_item(batch_ref.work_item_id)
        if WorkItemStatus(item.status) in TERMINAL_STATUSES:
            raise InvalidTransition(item.status, decision.value, "work item is closed")

        links = ReviewLinkService(self.db, **self._wiring())
        link = None
        if review_link_id is not None:
            link = self.db.get(ReviewLinkModel, review_link_id)
            if link is None or link.work_item_id != item.id:
                raise NotFound("ReviewLink", review_link_id)

        batches = BatchService(self.db, **self._wiring())
        batch = batches.get_batch(item.id, batch_ref.label)
        if batch.primary is None:
            raise NotFound("DeliveryBatch", f"{item.id}:{batch_ref.label or '*'}")
        if link is not None and link.delivery_id is not None:
            self._ensure_link_covers(link, batch)
        if batch.is_decided:
            raise AlreadyDecided(item.id, batch_ref.label)

        now = self.clock.now()
        notifications: List[NotificationEvent] = []
        try:
            with unit_of_work(self.db):
                if link is None and self.settings.feedback_requires_review_link:
                    link = links.create_internal(item, batch.primary.id, actor)

                feedback = FeedbackModel(
                    id=generate_ulid(),
                    work_item_id=item.id,
                    delivery_id=batch.primary.id,
                    review_link_id=link.id if link else None,
                    sub_item_label=batch.label,
                    decision=decision.value,
                    notes=notes,
                    feedback_text=feedback_text,
                    rating=rating,
                    attachments=attachments.to_dict() if has_attachments else None,
                    actor_id=actor.actor_id,
                    actor_role=actor.role.value,
                    reviewed_by=reviewer_name or actor.display,
                    reviewed_at=now,
                )
                self.db.add(feedback)
                self.db.flush()
                self.audit.log_create(
                    entity_kind="Feedback",
                    entity_id=feedback.id,
                    after=feedback.to_dict(),
                    actor=actor,
                    trace_id=trace_id or item.trace_id,
                    ts=now,
                )

                if decision == FeedbackDecision.APPROVED:
                    event = self._after_approval(item, actor, batches)
                else:
                    event = self._after_revision_request(item, actor)
                if event is not None:
                    notifications.append(event)

                if link is not None and link.delivery_id is not None and link.is_active:
                    links.deactivate(link, actor, note="Decision submitted")
        except IntegrityError as exc:
            raise AlreadyDecided(item.id, batch_ref.label) from exc

        self.db.refresh(item)
        self.db.refresh(feedback)

        notifications.insert(
            0,
            NotificationEvent(
                work_item_id=item.id,
                actor_id=actor.actor_id,
                event="decision",
                decision=decision.value,
                sub_item_label=batch.label,
                recipient_id=item.assigned_to,
                timestamp=now,
            ),
        )
        for event in notifications:
            dispatch(self.notifier, event)

        logger.info(
            "Decision %s on %s [%s]", decision.value, item.id, batch.label or "whole item"
        )
        return DecisionResult(feedback=feedback, work_item=item, notifications=notifications)

    def _ensure_link_covers(self, link: ReviewLinkModel, batch: DeliveryBatch) -> None:
        """A delivery link may only decide the round its delivery belongs to.

        Once a newer round lands, the linked delivery is no longer what the
        batch shows, so the link stops accepting decisions.
        """
        if link.delivery_id in {d.id for d in batch.deliveries}:
            return
        logger.info(
            "Rejected decision through link %s: delivery %s is not in the current round of [%s]",
            link.id,
            link.delivery_id,
            batch.label or "whole item",
        )
        raise InvalidLink()

    def _after_approval(
        self, item: WorkItemModel, actor: Actor, batches: "BatchService"
    ) -> Optional[NotificationEvent]:
        required = item.sub_item_labels or [None]
        current = batches.get_batches(item.id)
        approved = [
            b.label for b in current
            if b.label in required and b.status == SubItemStatus.APPROVED
        ]

        before = item.completed_sub_items or 0
        completed = max(before, len(approved))
        if completed != before:
            self.db.execute(
                update(WorkItemModel)
                .where(WorkItemModel.id == item.id)
                .values(completed_sub_items=completed, updated_at=self.clock.now())
                .execution_options(synchronize_session=False)
            )
            self.audit.log_update(
                entity_kind="WorkItem",
                entity_id=item.id,
                before={"completed_sub_items": before},
                after={"completed_sub_items": completed},
                actor=actor,
                trace_id=item.trace_id,
                ts=self.clock.now(),
            )

        if len(approved) < len(required):
            return None

        status = WorkItemStatus(item.status)
        workflow = WorkItemService(self.db, **self._wiring())
        if status == WorkItemStatus.REVIEW_CLIENT or (
            status == WorkItemStatus.REVIEW_ADMIN and not item.requires_client_review
        ):
            return workflow._move(
                item,
                WorkItemStatus.COMPLETED,
                actor,
                values={"completed_at": self.clock.now()},
                note="All sub-items approved",
            )
        if status == WorkItemStatus.REVIEW_ADMIN:
            return workflow._move(
                item, WorkItemStatus.REVIEW_CLIENT, actor, note="All sub-items approved internally"
            )
        return None

    def _after_revision_request(
        self, item: WorkItemModel, actor: Actor
    ) -> Optional[NotificationEvent]:
        increment = {"revision_count": WorkItemModel.revision_count + 1}
        if WorkItemStatus(item.status) in _REVIEW_STATUSES:
            workflow = WorkItemService(self.db, **self._wiring())
            return workflow._move(
                item,
                WorkItemStatus.REVISION_REQUESTED,
                actor,
                values=increment,
                note="Revision requested",
            )

        self.db.execute(
            update(WorkItemModel)
            .where(WorkItemModel.id == item.id)
            .values(updated_at=self.clock.now(), **increment)
            .execution_options(synchronize_session=False)
        )
        return None

    def get(self, feedback_id: str) -> Optional[FeedbackModel]:
        """Get a Feedback record by ID."""
        return self.db.get(FeedbackModel, feedback_id)

    def list_for_work_item(
        self,
        work_item_id: str,
        decision: Optional[str] = None,
    ) -> List[FeedbackModel]:
        """Feedback for a work item, newest first."""
        query = self.db.query(FeedbackModel).filter(
            FeedbackModel.work_item_id == work_item_id
        )
        if decision:
            query = query.filter(FeedbackModel.decision == decision)
        return query.order_by(desc(FeedbackModel.reviewed_at), desc(FeedbackModel.id)).all()


class ReviewLinkService(_EngineService):
    """Issues, resolves and revokes external review tokens."""

    def issue(
        self,
        work_item_id: str,
        delivery_id: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        supersede: bool = False,
        actor: Actor = SYSTEM_ACTOR,
        trace_id: Optional[str] = None,
    ) -> ReviewLinkModel:
        """Create an active review link for a delivery or a whole work item.

        Earlier links for the same target stay valid unless ``supersede`` is
        set, in which case they are revoked in the same transaction.
        """
        item = self._get_work_item(work_item_id)
        if delivery_id is not None:
            delivery = self.db.get(DeliveryModel, delivery_id)
            if delivery is None or delivery.work_item_id != item.id:
                raise NotFound("Delivery", delivery_id)

        now = self.clock.now()
        if ttl is None:
            ttl = timedelta(days=self.settings.review_link_ttl_days)
        link = ReviewLinkModel(
            id=generate_ulid(),
            token=secrets.token_urlsafe(self.settings.review_link_token_bytes),
            work_item_id=item.id,
            delivery_id=delivery_id,
            expires_at=now + ttl,
            is_active=True,
            is_internal=False,
            view_count=0,
            created_by=actor.actor_id,
            created_at=now,
        )

        with unit_of_work(self.db):
            if supersede:
                for previous in self._active_for_target(item.id, delivery_id):
                    self.deactivate(previous, actor, note="Superseded by a newer link")
            self.db.add(link)
            self.db.flush()
            self.audit.log_create(
                entity_kind="ReviewLink",
                entity_id=link.id,
                after=link.to_dict(),
                actor=actor,
                trace_id=trace_id or item.trace_id,
                ts=now,
            )

        self.db.refresh(link)
        logger.info("Issued review link %s for %s", link.id, item.id)
        return link

    def create_internal(
        self, item: WorkItemModel, delivery_id: Optional[str], actor: Actor
    ) -> ReviewLinkModel:
        """Add an internal-tracking link to the open transaction.

        Used when an in-app review has no external link to attach to the
        feedback record. It is born inactive and can never be resolved.
        """
        now = self.clock.now()
        link = ReviewLinkModel(
            id=generate_ulid(),
            token=secrets.token_urlsafe(self.settings.review_link_token_bytes),
            work_item_id=item.id,
            delivery_id=delivery_id,
            expires_at=now,
            is_active=False,
            is_internal=True,
            view_count=0,
            created_by=actor.actor_id,
            created_at=now,
        )
        self.db.add(link)
        self.db.flush()
        self.audit.log_create(
            entity_kind="ReviewLink",
            entity_id=link.id,
            after=link.to_dict(),
            actor=actor,
            note="Internal tracking link",
            trace_id=item.trace_id,
            ts=now,
        )
        return link

    def _active_for_target(
        self, work_item_id: str, delivery_id: Optional[str]
    ) -> List[ReviewLinkModel]:
        query = self.db.query(ReviewLinkModel).filter(
            ReviewLinkModel.work_item_id == work_item_id,
            ReviewLinkModel.is_active.is_(True),
            ReviewLinkModel.is_internal.is_(False),
        )
        if delivery_id is None:
            query = query.filter(ReviewLinkModel.delivery_id.is_(None))
        else:
            query = query.filter(ReviewLinkModel.delivery_id == delivery_id)
        return query.all()

    def resolve(self, token: str) -> ReviewTarget:
        """Count one view and return what the token grants access to.

        Raises:
            InvalidLink: unknown, revoked, internal or expired token
        """
        now = self.clock.now()
        with unit_of_work(self.db):
            result = self.db.execute(
                update(ReviewLinkModel)
                .where(
                    ReviewLinkModel.token == token,
                    ReviewLinkModel.is_active.is_(True),
                    ReviewLinkModel.is_internal.is_(False),
                    ReviewLinkModel.expires_at > now,
                )
                .values(
                    view_count=ReviewLinkModel.view_count + 1,
                    last_viewed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info("Rejected review token: %s", self._diagnose(token))
                raise InvalidLink()

        link = self.db.query(ReviewLinkModel).filter(ReviewLinkModel.token == token).one()
        self.db.refresh(link)
        return self._target(link)

    def validate(self, token: str) -> ReviewLinkModel:
        """Check a token without counting a view.

        Raises:
            InvalidLink: unknown, revoked, internal or expired token
        """
        now = self.clock.now()
        link = self.db.query(ReviewLinkModel).filter(ReviewLinkModel.token == token).first()
        if link is None or not link.is_usable(now):
            logger.info("Rejected review token: %s", self._diagnose(token))
            raise InvalidLink()
        return link

    def target_for(self, link: ReviewLinkModel) -> ReviewTarget:
        return self._target(link)

    def _target(self, link: ReviewLinkModel) -> ReviewTarget:
        label = None
        if link.delivery_id is not None:
            delivery = self.db.get(DeliveryModel, link.delivery_id)
            label = delivery.sub_item_label if delivery else None
        return ReviewTarget(
            link_id=link.id,
            work_item_id=link.work_item_id,
            delivery_id=link.delivery_id,
            sub_item_label=label,
        )

    def _diagnose(self, token: str) -> str:
        """Why a token was rejected. For logs only, never for callers."""
        link = self.db.query(ReviewLinkModel).filter(ReviewLinkModel.token == token).first()
        if link is None:
            return "not_found"
        if link.is_internal:
            return "internal"
        if not link.is_active:
            return f"revoked link {link.id}"
        return f"expired link {link.id}"

    def deactivate(
        self, link: ReviewLinkModel, actor: Actor, note: Optional[str] = None
    ) -> None:
        """Deactivate ``link`` inside the open transaction."""
        now = self.clock.now()
        link.is_active = False
        link.revoked_at = now
        self.db.flush()
        self.audit.log_update(
            entity_kind="ReviewLink",
            entity_id=link.id,
            before={"is_active": True},
            after={"is_active": False},
            actor=actor,
            note=note,
            ts=now,
        )

    def revoke(self, link_id: str, actor: Actor = SYSTEM_ACTOR) -> ReviewLinkModel:
        """Deactivate a link. Revoking an inactive link is a no-op."""
        link = self.db.get(ReviewLinkModel, link_id)
        if link is None:
            raise NotFound("ReviewLink", link_id)
        if not link.is_active:
            return link

        with unit_of_work(self.db):
            self.deactivate(link, actor, note="Revoked")
        self.db.refresh(link)
        logger.info("Revoked review link %s", link.id)
        return link

    def get(self, link_id: str) -> Optional[ReviewLinkModel]:
        """Get a ReviewLink by ID."""
        return self.db.get(ReviewLinkModel, link_id)

    def list_for_work_item(
        self, work_item_id: str, include_internal: bool = False
    ) -> List[ReviewLinkModel]:
        """Review links of a work item, newest first."""
        query = self.db.query(ReviewLinkModel).filter(
            ReviewLinkModel.work_item_id == work_item_id
        )
        if not include_internal:
            query = query.filter(ReviewLinkModel.is_internal.is_(False))
        return query.order_by(desc(ReviewLinkModel.created_at), desc(ReviewLinkModel.id)).all()


def reviewer_actor(link: ReviewLinkModel, reviewer_name: Optional[str] = None) -> Actor:
    """Actor used for decisions submitted through an external review link."""
    return Actor(
        actor_id=f"review-link:{link.id}",
        role=ActorRole.CLIENT,
        display=reviewer_name,
    )
