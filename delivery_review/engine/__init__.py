"""
Delivery & Review Lifecycle Engine.

Work items move through a review state machine; producers hand over
deliveries, which are grouped into batches that reviewers approve or send
back through review links or in-app decisions.

Services live in ``delivery_review.engine.services`` and are imported from
there.
"""

from .batches import DeliveryBatch, resolve_batch, resolve_history, resolve_work_item
from .clock import Clock, FixedClock, SystemClock
from .delivery import DeliveryCreate
from .enums import (
    ActorRole,
    DeliveryKind,
    FeedbackDecision,
    LinkType,
    SubItemStatus,
    WorkItemKind,
    WorkItemStatus,
)
from .errors import (
    AlreadyDecided,
    EmptyFeedback,
    InvalidLink,
    InvalidTransition,
    LifecycleError,
    NotAssignee,
    NotFound,
    StorageUnavailable,
)
from .feedback import Attachments, AudioClip, BatchRef, DecisionCreate
from .lateness import is_late
from .notifications import LoggingNotifier, NotificationEvent, Notifier, RecordingNotifier
from .primitives import SYSTEM_ACTOR, Actor
from .review_link import ReviewLinkIssue, ReviewTarget
from .state_machine import TRANSITIONS, can_transition, ensure_transition
from .work_item import SubItem, WorkItemCreate, parse_manifest_summary

__all__ = [
    # Enums
    "ActorRole",
    "DeliveryKind",
    "FeedbackDecision",
    "LinkType",
    "SubItemStatus",
    "WorkItemKind",
    "WorkItemStatus",
    # Errors
    "LifecycleError",
    "InvalidTransition",
    "NotAssignee",
    "EmptyFeedback",
    "AlreadyDecided",
    "InvalidLink",
    "NotFound",
    "StorageUnavailable",
    # Schemas
    "Actor",
    "SYSTEM_ACTOR",
    "WorkItemCreate",
    "SubItem",
    "DeliveryCreate",
    "DecisionCreate",
    "Attachments",
    "AudioClip",
    "BatchRef",
    "ReviewLinkIssue",
    "ReviewTarget",
    # Time
    "Clock",
    "SystemClock",
    "FixedClock",
    # Pure logic
    "TRANSITIONS",
    "can_transition",
    "ensure_transition",
    "is_late",
    "parse_manifest_summary",
    "DeliveryBatch",
    "resolve_batch",
    "resolve_history",
    "resolve_work_item",
    # Notifications
    "NotificationEvent",
    "Notifier",
    "LoggingNotifier",
    "RecordingNotifier",
]
