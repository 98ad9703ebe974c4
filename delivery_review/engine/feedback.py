"""
Feedback (review decision) schemas.

A revision request must say what to change: notes, reference images, or a
short voice note. Limits on attachments come from settings.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

from ..config import get_settings
from .enums import FeedbackDecision
from .primitives import Actor


class AudioClip(BaseModel):
    """Recorded voice note attached to a revision request."""

    model_config = ConfigDict(extra="forbid")

    ref: constr(min_length=1, max_length=2000) = Field(
        ..., description="Storage reference of the recording"
    )
    duration_seconds: float = Field(..., gt=0)

    @field_validator("duration_seconds")
    @classmethod
    def _max_duration(cls, value: float) -> float:
        limit = get_settings().max_revision_audio_seconds
        if value > limit:
            raise ValueError(f"Audio notes are limited to {limit} seconds")
        return value


class Attachments(BaseModel):
    """Images and/or audio attached to feedback."""

    model_config = ConfigDict(extra="forbid")

    images: List[constr(min_length=1, max_length=2000)] = Field(default_factory=list)
    audio: Optional[AudioClip] = None

    @field_validator("images")
    @classmethod
    def _max_images(cls, value: List[str]) -> List[str]:
        limit = get_settings().max_revision_images
        if len(value) > limit:
            raise ValueError(f"At most {limit} images can be attached")
        return value

    @property
    def is_empty(self) -> bool:
        return not self.images and self.audio is None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class BatchRef(BaseModel):
    """Identifies the current delivery batch of one sub-item."""

    model_config = ConfigDict(extra="forbid")

    work_item_id: constr(min_length=1, max_length=128)
    label: Optional[constr(min_length=1, max_length=128)] = None


class DecisionCreate(BaseModel):
    """Schema for applying a decision to a delivery batch."""

    model_config = ConfigDict(extra="forbid")

    label: Optional[constr(min_length=1, max_length=128)] = Field(
        None, description="Sub-item label of the batch; None for the whole item"
    )
    decision: FeedbackDecision
    notes: Optional[constr(max_length=8000)] = None
    feedback_text: Optional[constr(max_length=8000)] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    reviewer_name: Optional[constr(min_length=1, max_length=256)] = None
    attachments: Optional[Attachments] = None
    actor: Actor


class LinkDecisionCreate(BaseModel):
    """Decision submitted by an external reviewer through a review link."""

    model_config = ConfigDict(extra="forbid")

    label: Optional[constr(min_length=1, max_length=128)] = None
    decision: FeedbackDecision
    notes: Optional[constr(max_length=8000)] = None
    feedback_text: Optional[constr(max_length=8000)] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    reviewer_name: Optional[constr(min_length=1, max_length=256)] = None
    attachments: Optional[Attachments] = None
