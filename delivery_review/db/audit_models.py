"""
Audit Log Database Models.

Every lifecycle change (work item status moves, deliveries, decisions, review
link issue/revoke) is recorded with before/after snapshots, actor information
and trace context.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    String,
    Text,
)

from ..engine.primitives import isoformat, utc_now
from .base import Base

# Audit action enum
audit_action_enum = Enum(
    "created",
    "updated",
    "status_changed",
    "deleted",
    name="audit_action",
)


class AuditLogModel(Base):
    """Audit log entry for forensics.

    Provides:
    - Full traceability of who did what and when
    - Before/after state for debugging
    - Correlation via trace_id
    """

    __tablename__ = "audit_log"

    # Primary key (ULID for sortability and uniqueness)
    id = Column(String(36), primary_key=True)

    # Timestamp of the action
    ts = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        index=True,
    )

    # Who performed the action
    actor_role = Column(String(32), nullable=False)
    actor_id = Column(String(128), nullable=False, index=True)

    # What action was performed
    action = Column(audit_action_enum, nullable=False, index=True)

    # What entity was affected
    entity_kind = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(128), nullable=False, index=True)

    # State snapshots (JSON)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)

    # Optional human-readable note about the action
    note = Column(Text, nullable=True)

    # Trace ID for correlation
    trace_id = Column(String(36), nullable=True, index=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_actor", "actor_role", "actor_id"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ts": isoformat(self.ts),
            "actor_role": self.actor_role,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
            "trace_id": self.trace_id,
        }
