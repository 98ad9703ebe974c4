"""
Delivery Review Engine

Delivery and review lifecycle for outsourced creative production: work items,
deliveries, batched reviews, review links and lateness.
"""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("delivery-review-engine")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0+local"

from .engine import (
    Actor,
    FeedbackDecision,
    LifecycleError,
    WorkItemKind,
    WorkItemStatus,
)

__all__ = [
    "Actor",
    "FeedbackDecision",
    "LifecycleError",
    "WorkItemKind",
    "WorkItemStatus",
]
