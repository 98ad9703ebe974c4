"""Review link schemas."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, constr


class ReviewLinkIssue(BaseModel):
    """Schema for issuing a review link.

    Without ``delivery_id`` the link covers every sub-item of the work item.
    """

    model_config = ConfigDict(extra="forbid")

    work_item_id: constr(min_length=1, max_length=128)
    delivery_id: Optional[constr(min_length=1, max_length=128)] = None
    ttl_seconds: Optional[int] = Field(
        None, ge=1, description="Lifetime of the link; defaults to REVIEW_LINK_TTL_DAYS"
    )
    supersede: bool = Field(
        False, description="Revoke active links for the same target first"
    )


@dataclass(frozen=True)
class ReviewTarget:
    """What a review token grants access to."""

    link_id: str
    work_item_id: str
    delivery_id: Optional[str] = None
    sub_item_label: Optional[str] = None

    @property
    def is_project_link(self) -> bool:
        return self.delivery_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "link_id": self.link_id,
            "work_item_id": self.work_item_id,
            "delivery_id": self.delivery_id,
            "sub_item_label": self.sub_item_label,
            "scope": "project" if self.is_project_link else "delivery",
        }
