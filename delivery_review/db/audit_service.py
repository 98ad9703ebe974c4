"""
Audit Log Service.

Records audit events for lifecycle operations. Entries are added to the
caller's session and flushed, never committed here: an audit entry is written
in the same transaction as the change it describes, so a rolled-back change
leaves no audit trace.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..engine.primitives import Actor, generate_ulid, utc_now
from .audit_models import AuditLogModel


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_create("WorkItem", item.id, item.to_dict(), actor=actor)
        db_session.commit()
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        actor: Actor,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        note: Optional[str],
        trace_id: Optional[str],
        ts: Optional[datetime],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=ts or utc_now(),
            actor_role=actor.role.value,
            actor_id=actor.actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            trace_id=trace_id,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor: Actor,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> AuditLogModel:
        """Log the creation of an entity.

        Args:
            entity_kind: Type of entity (e.g., "WorkItem", "Delivery")
            entity_id: ID of the entity
            after: State of the entity after creation
            actor: Who created it
            note: Optional human-readable note
            trace_id: Optional trace ID for correlation
            ts: Timestamp of the action (defaults to now)

        Returns:
            The created AuditLogModel
        """
        return self._record(
            "created", entity_kind, entity_id, actor, None, after, note, trace_id, ts
        )

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor: Actor,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> AuditLogModel:
        """Log an update to an entity (counters, link revocation, views)."""
        return self._record(
            "updated", entity_kind, entity_id, actor, before, after, note, trace_id, ts
        )

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor: Actor,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> AuditLogModel:
        """Log a status change on an entity."""
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            actor,
            {"status": old_status},
            {"status": new_status},
            note or f"Status changed: {old_status} -> {new_status}",
            trace_id,
            ts,
        )

    def log_delete(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        actor: Actor,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        ts: Optional[datetime] = None,
    ) -> AuditLogModel:
        """Log the deletion of an entity."""
        return self._record(
            "deleted", entity_kind, entity_id, actor, before, None, note, trace_id, ts
        )

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts), desc(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_trace(
        self,
        trace_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get all audit entries for a trace ID, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(AuditLogModel.trace_id == trace_id)
            .order_by(desc(AuditLogModel.ts), desc(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_actor(
        self,
        actor_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get all audit entries by a specific actor, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(AuditLogModel.actor_id == actor_id)
            .order_by(desc(AuditLogModel.ts), desc(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
