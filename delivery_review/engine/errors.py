"""
Error taxonomy of the lifecycle engine.

Every error carries a stable code for programmatic handling and converts to
a JSON-friendly dict. The API layer maps codes to HTTP status codes; the
engine itself never retries.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """
    Base class for all engine errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
    """

    code = "lifecycle_error"

    def __init__(self, message: str, code: Optional[str] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
        }


class InvalidTransition(LifecycleError):
    """Raised when a status precondition is not met."""

    code = "invalid_transition"

    def __init__(self, current: str, requested: str, reason: Optional[str] = None):
        self.current = current
        self.requested = requested
        message = f"Cannot move from '{current}' to '{requested}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["current"] = self.current
        data["requested"] = self.requested
        return data


class NotAssignee(LifecycleError):
    """Raised when the actor lacks ownership for a state-changing operation."""

    code = "not_assignee"

    def __init__(self, work_item_id: str, actor_id: str):
        self.work_item_id = work_item_id
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} is not the assignee of {work_item_id}")


class EmptyFeedback(LifecycleError):
    """Raised when a revision request carries neither notes nor attachments."""

    code = "empty_feedback"

    def __init__(self) -> None:
        super().__init__(
            "A revision request needs notes or at least one attachment"
        )


class AlreadyDecided(LifecycleError):
    """Raised when a decision is applied to a batch that already has one."""

    code = "already_decided"

    def __init__(self, work_item_id: str, label: Optional[str]):
        self.work_item_id = work_item_id
        self.label = label
        target = f"'{label}'" if label else "the whole item"
        super().__init__(f"The current batch of {target} has already been reviewed")


class InvalidLink(LifecycleError):
    """Raised when a review token is not usable.

    Expired, revoked and unknown tokens all surface as this one error so
    callers cannot probe which tokens exist.
    """

    code = "invalid"

    def __init__(self) -> None:
        super().__init__("This review link is no longer valid")


class NotFound(LifecycleError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"

    def __init__(self, entity_kind: str, entity_id: Any):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(f"{entity_kind} {entity_id} not found")


class StorageUnavailable(LifecycleError):
    """Raised when the storage layer fails transiently. Safe to retry."""

    code = "storage_unavailable"

    def __init__(self, detail: str = "Storage is temporarily unavailable"):
        super().__init__(detail)
