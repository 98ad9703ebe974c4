"""
Common primitives shared across the lifecycle engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, constr
from ulid import ULID

from .enums import ActorRole


def generate_ulid() -> str:
    """Generate a ULID for object IDs.

    ULIDs are lexicographically sortable and globally unique.
    """
    return str(ULID())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands timestamps back without tzinfo; those are stored as UTC, so a
    naive value is interpreted as UTC rather than local time.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp as ISO-8601 UTC, or None."""
    value = as_utc(value)
    return value.isoformat() if value else None


class Actor(BaseModel):
    """Who is performing an operation.

    Supplied by the identity collaborator; the engine trusts it except where
    an explicit ownership check applies (starting a work item).
    """

    model_config = ConfigDict(extra="forbid")

    actor_id: constr(min_length=1, max_length=128) = Field(
        ..., description="Unique identifier for the actor"
    )
    role: ActorRole = Field(ActorRole.PRODUCER, description="Role of the actor")
    display: Optional[constr(min_length=1, max_length=256)] = Field(
        None, description="Human-readable display name"
    )


SYSTEM_ACTOR = Actor(actor_id="lifecycle-engine", role=ActorRole.SYSTEM)
