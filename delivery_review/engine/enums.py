"""
Canonical enums for the delivery review lifecycle.

Storage columns and API payloads use the string values; callers MUST map
tool-specific values into these sets.
"""

from enum import Enum


class WorkItemKind(str, Enum):
    """Kinds of production work."""

    VIDEO = "video"
    DESIGN = "design"


class WorkItemStatus(str, Enum):
    """Persisted lifecycle status of a work item."""

    NEW = "new"
    ACTIVE = "active"
    LATE = "late"
    REVIEW_ADMIN = "review_admin"
    REVIEW_CLIENT = "review_client"
    REVISION_REQUESTED = "revision_requested"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({WorkItemStatus.COMPLETED, WorkItemStatus.CANCELLED})


class DeliveryKind(str, Enum):
    """How an artifact was handed over."""

    FILE = "file"
    EXTERNAL_LINK = "external_link"


class LinkType(str, Enum):
    """Hosting service of an external-link delivery."""

    DRIVE = "drive"
    FRAME = "frame"
    DROPBOX = "dropbox"
    OTHER = "other"


class FeedbackDecision(str, Enum):
    """Reviewer decision on a delivery batch."""

    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"


class SubItemStatus(str, Enum):
    """Derived approval status of one sub-item."""

    PENDING = "pending"
    DELIVERED = "delivered"
    APPROVED = "approved"
    REVISION = "revision"


class ActorRole(str, Enum):
    """Roles supplied by the identity collaborator."""

    PRODUCER = "producer"
    ADMIN = "admin"
    CLIENT = "client"
    SYSTEM = "system"


class SubItemType(str, Enum):
    """Known sub-item types of a design manifest, in display order."""

    MINIATURE = "Miniature"
    POST = "Post"
    CARROUSEL = "Carrousel"
