"""
WorkItem schemas and the sub-item manifest.

A work item's sub-items (e.g. "Miniature 1", "Post 2") are fixed once, when the
item is created. Callers pass either an explicit list of sub-items or a legacy
summary string such as ``"[2x Miniature + 1x Carrousel 5p]"``; the summary is
parsed exactly once, here, and never again at read time.
"""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, model_validator

from .enums import SubItemType, WorkItemKind
from .primitives import Actor

_SUMMARY_RE = re.compile(r"^\[(.+?)\]")
_CAROUSEL_RE = re.compile(r"(\d+)x\s*Carrousel\s+(\d+)p", re.IGNORECASE)
_SIMPLE_RE = re.compile(r"(\d+)x\s*(Post|Miniature)", re.IGNORECASE)


class SubItem(BaseModel):
    """One reviewable unit of a work item."""

    model_config = ConfigDict(extra="forbid")

    type: constr(min_length=1, max_length=64) = Field(
        ..., description="Sub-item type (e.g., 'Miniature', 'Post')"
    )
    label: constr(min_length=1, max_length=128) = Field(
        ..., description="Unique label within the work item (e.g., 'Post 1')"
    )
    ordinal: int = Field(..., ge=1, description="1-based position in the manifest")
    pages: Optional[int] = Field(
        None, ge=1, description="Page count for multi-page items (carousels)"
    )


class SubItemSpec(BaseModel):
    """Caller-supplied sub-item; label and ordinal are filled in if missing."""

    model_config = ConfigDict(extra="forbid")

    type: constr(min_length=1, max_length=64)
    label: Optional[constr(min_length=1, max_length=128)] = None
    ordinal: Optional[int] = Field(None, ge=1)
    pages: Optional[int] = Field(None, ge=1)


def parse_manifest_summary(summary: Optional[str]) -> List[SubItem]:
    """Parse a legacy ``[Nx Type + ...]`` summary into sub-items.

    Examples:
        "[2x Miniature + 1x Post]" -> Miniature 1, Miniature 2, Post 1
        "[1x Carrousel 5p]"        -> Carrousel 1 (5 pages)
        "free text"                -> []
    """
    if not summary:
        return []
    match = _SUMMARY_RE.match(summary.strip())
    if not match:
        return []

    counts: Counter = Counter()
    pages: Dict[str, int] = {}
    for entry in (part.strip() for part in match.group(1).split("+")):
        carousel = _CAROUSEL_RE.search(entry)
        if carousel:
            counts[SubItemType.CARROUSEL.value] += int(carousel.group(1))
            pages[SubItemType.CARROUSEL.value] = int(carousel.group(2))
            continue
        simple = _SIMPLE_RE.search(entry)
        if simple:
            counts[simple.group(2).capitalize()] += int(simple.group(1))

    items: List[SubItem] = []
    for item_type in SubItemType:
        for index in range(counts[item_type.value]):
            items.append(
                SubItem(
                    type=item_type.value,
                    label=f"{item_type.value} {index + 1}",
                    ordinal=len(items) + 1,
                    pages=pages.get(item_type.value),
                )
            )
    return items


def build_manifest(specs: List[SubItemSpec]) -> List[SubItem]:
    """Normalize caller-supplied sub-items into a manifest.

    Missing labels are numbered per type ("Post 1", "Post 2"); missing
    ordinals follow list order.

    Raises:
        ValueError: if two sub-items end up with the same label
    """
    per_type: Dict[str, int] = defaultdict(int)
    items: List[SubItem] = []
    for position, spec in enumerate(specs, start=1):
        per_type[spec.type] += 1
        items.append(
            SubItem(
                type=spec.type,
                label=spec.label or f"{spec.type} {per_type[spec.type]}",
                ordinal=spec.ordinal or position,
                pages=spec.pages,
            )
        )

    labels = [item.label for item in items]
    duplicates = sorted({label for label in labels if labels.count(label) > 1})
    if duplicates:
        raise ValueError(f"Duplicate sub-item labels: {', '.join(duplicates)}")
    return sorted(items, key=lambda item: item.ordinal)


class WorkItemCreate(BaseModel):
    """Schema for creating a new WorkItem."""

    model_config = ConfigDict(extra="forbid")

    kind: WorkItemKind = WorkItemKind.DESIGN
    title: constr(min_length=1, max_length=256)
    description: Optional[str] = None
    assigned_to: Optional[constr(min_length=1, max_length=128)] = None
    deadline: Optional[datetime] = None
    allowed_duration_minutes: Optional[int] = Field(None, ge=1)
    requires_client_review: bool = True
    manifest: Optional[List[SubItemSpec]] = Field(
        None, description="Explicit sub-items; takes precedence over manifest_summary"
    )
    manifest_summary: Optional[str] = Field(
        None, description="Legacy summary such as '[2x Miniature + 1x Post]'"
    )
    meta: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_manifest(self) -> "WorkItemCreate":
        if self.manifest:
            build_manifest(self.manifest)
        return self

    def resolved_manifest(self) -> List[SubItem]:
        """The manifest to store for this item."""
        if self.manifest:
            return build_manifest(self.manifest)
        return parse_manifest_summary(self.manifest_summary or self.description)


class TransitionRequest(BaseModel):
    """Body of a lifecycle transition call."""

    model_config = ConfigDict(extra="forbid")

    actor: Actor


class AdminReviewRequest(BaseModel):
    """Body of an internal review call."""

    model_config = ConfigDict(extra="forbid")

    approve: bool
    notes: Optional[constr(max_length=8000)] = None
    actor: Actor


class CancelRequest(BaseModel):
    """Body of a cancellation call."""

    model_config = ConfigDict(extra="forbid")

    reason: Optional[constr(max_length=2000)] = None
    actor: Actor
