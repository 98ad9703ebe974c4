"""
SQLAlchemy models for the delivery review lifecycle.

Four tables related by foreign key: work_items, deliveries, feedback and
review_links. Deleting a work item cascades to the other three.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from ..engine.primitives import as_utc, isoformat, utc_now
from .base import Base

work_item_status_enum = Enum(
    "new",
    "active",
    "late",
    "review_admin",
    "review_client",
    "revision_requested",
    "completed",
    "cancelled",
    name="work_item_status",
)

work_item_kind_enum = Enum("video", "design", name="work_item_kind")

delivery_kind_enum = Enum("file", "external_link", name="delivery_kind")

link_type_enum = Enum("drive", "frame", "dropbox", "other", name="delivery_link_type")

feedback_decision_enum = Enum(
    "approved", "revision_requested", name="feedback_decision"
)


class WorkItemModel(Base):
    """A unit of paid production (video or design task)."""

    __tablename__ = "work_items"

    id = Column(String(36), primary_key=True)
    kind = Column(work_item_kind_enum, nullable=False, default="design", index=True)
    trace_id = Column(String(36), nullable=True, index=True)

    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    assigned_to = Column(String(128), nullable=True, index=True)
    created_by = Column(String(128), nullable=True)

    status = Column(work_item_status_enum, nullable=False, default="new", index=True)
    deadline = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    allowed_duration_minutes = Column(Integer, nullable=True)

    # Counters (only ever increase)
    revision_count = Column(Integer, nullable=False, default=0)
    completed_sub_items = Column(Integer, nullable=False, default=0)

    # Workflow variant: admin approval forwards to the client or completes
    requires_client_review = Column(Boolean, nullable=False, default=True)

    # Ordered list of {type, label, ordinal, pages}
    manifest = Column(JSON, nullable=False, default=list)
    meta = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    deliveries = relationship(
        "DeliveryModel",
        back_populates="work_item",
        cascade="all, delete-orphan",
    )
    feedback = relationship(
        "FeedbackModel",
        back_populates="work_item",
        cascade="all, delete-orphan",
    )
    review_links = relationship(
        "ReviewLinkModel",
        back_populates="work_item",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_work_items_status_started", "status", "started_at"),
        Index("ix_work_items_assignee_status", "assigned_to", "status"),
    )

    @property
    def sub_item_labels(self) -> List[str]:
        """Manifest labels in manifest order."""
        items = sorted(self.manifest or [], key=lambda item: item.get("ordinal", 0))
        return [item["label"] for item in items]

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "kind": "WorkItem",
            "id": self.id,
            "work_item_kind": self.kind,
            "trace_id": self.trace_id,
            "title": self.title,
            "description": self.description,
            "assigned_to": self.assigned_to,
            "created_by": self.created_by,
            "status": self.status,
            "deadline": isoformat(self.deadline),
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "allowed_duration_minutes": self.allowed_duration_minutes,
            "revision_count": self.revision_count,
            "completed_sub_items": self.completed_sub_items,
            "requires_client_review": self.requires_client_review,
            "manifest": self.manifest or [],
            "meta": self.meta or {},
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class DeliveryModel(Base):
    """One submitted artifact. Immutable once created."""

    __tablename__ = "deliveries"

    id = Column(String(36), primary_key=True)
    work_item_id = Column(
        String(36),
        ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sub_item_label = Column(String(128), nullable=True, index=True)
    kind = Column(delivery_kind_enum, nullable=False)
    payload_ref = Column(String(2000), nullable=False)
    link_type = Column(link_type_enum, nullable=True)
    notes = Column(Text, nullable=True)
    submitted_by = Column(String(128), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    idempotency_key = Column(String(128), nullable=True)

    work_item = relationship("WorkItemModel", back_populates="deliveries")

    __table_args__ = (
        UniqueConstraint(
            "work_item_id", "version_number", name="uq_deliveries_item_version"
        ),
        # NULL labels (whole-item deliveries) must collide too
        Index(
            "uq_deliveries_idempotency",
            work_item_id,
            func.coalesce(sub_item_label, ""),
            idempotency_key,
            unique=True,
        ),
        Index("ix_deliveries_item_label_submitted", "work_item_id", "sub_item_label", "submitted_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "kind": "Delivery",
            "id": self.id,
            "work_item_id": self.work_item_id,
            "sub_item_label": self.sub_item_label,
            "delivery_kind": self.kind,
            "payload_ref": self.payload_ref,
            "link_type": self.link_type,
            "notes": self.notes,
            "submitted_by": self.submitted_by,
            "submitted_at": isoformat(self.submitted_at),
            "version_number": self.version_number,
            "idempotency_key": self.idempotency_key,
        }


class FeedbackModel(Base):
    """A reviewer's decision on a delivery batch. Append-only."""

    __tablename__ = "feedback"

    id = Column(String(36), primary_key=True)
    work_item_id = Column(
        String(36),
        ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Primary delivery of the decided batch; one decision per batch
    delivery_id = Column(
        String(36),
        ForeignKey("deliveries.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    review_link_id = Column(
        String(36),
        ForeignKey("review_links.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    sub_item_label = Column(String(128), nullable=True)

    decision = Column(feedback_decision_enum, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    feedback_text = Column(Text, nullable=True)
    rating = Column(Integer, nullable=True)
    attachments = Column(JSON, nullable=True)

    actor_id = Column(String(128), nullable=False)
    actor_role = Column(String(32), nullable=False, default="client")
    reviewed_by = Column(String(256), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=False, index=True)

    work_item = relationship("WorkItemModel", back_populates="feedback")

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "kind": "Feedback",
            "id": self.id,
            "work_item_id": self.work_item_id,
            "delivery_id": self.delivery_id,
            "review_link_id": self.review_link_id,
            "sub_item_label": self.sub_item_label,
            "decision": self.decision,
            "notes": self.notes,
            "feedback_text": self.feedback_text,
            "rating": self.rating,
            "attachments": self.attachments,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": isoformat(self.reviewed_at),
        }


class ReviewLinkModel(Base):
    """Capability token granting time-boxed external review access."""

    __tablename__ = "review_links"

    id = Column(String(36), primary_key=True)
    token = Column(String(128), nullable=False, unique=True, index=True)
    work_item_id = Column(
        String(36),
        ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Set for delivery-scoped links; None means the whole work item
    delivery_id = Column(
        String(36),
        ForeignKey("deliveries.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    # Internal-tracking links exist only for the audit trail of in-app reviews
    is_internal = Column(Boolean, nullable=False, default=False)

    view_count = Column(Integer, nullable=False, default=0)
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    work_item = relationship("WorkItemModel", back_populates="review_links")

    __table_args__ = (
        Index("ix_review_links_target_active", "work_item_id", "delivery_id", "is_active"),
    )

    def is_usable(self, now) -> bool:
        """True while active, external and not yet expired at ``now``."""
        return (
            bool(self.is_active)
            and not self.is_internal
            and as_utc(now) < as_utc(self.expires_at)
        )

    def to_dict(self, include_token: bool = False) -> Dict[str, Any]:
        """Convert model to dictionary. The token is only included on request."""
        data: Dict[str, Optional[Any]] = {
            "kind": "ReviewLink",
            "id": self.id,
            "work_item_id": self.work_item_id,
            "delivery_id": self.delivery_id,
            "expires_at": isoformat(self.expires_at),
            "is_active": self.is_active,
            "is_internal": self.is_internal,
            "view_count": self.view_count,
            "last_viewed_at": isoformat(self.last_viewed_at),
            "revoked_at": isoformat(self.revoked_at),
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
        }
        if include_token:
            data["token"] = self.token
        return data
