"""Delivery submission schema."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, constr, model_validator

from .enums import DeliveryKind, LinkType
from .primitives import Actor


class DeliveryCreate(BaseModel):
    """Schema for submitting a Delivery.

    ``payload_ref`` is whatever the storage collaborator returned for the
    upload (a storage path) or the external URL; the engine never inspects it.
    """

    model_config = ConfigDict(extra="forbid")

    sub_item_label: Optional[constr(min_length=1, max_length=128)] = Field(
        None, description="Sub-item this delivery covers; None for the whole item"
    )
    kind: DeliveryKind
    payload_ref: constr(min_length=1, max_length=2000)
    link_type: Optional[LinkType] = None
    notes: Optional[constr(max_length=4000)] = None
    idempotency_key: Optional[constr(min_length=1, max_length=128)] = Field(
        None, description="Client-generated key; retries with the same key are deduplicated"
    )
    actor: Actor

    @model_validator(mode="after")
    def _default_link_type(self) -> "DeliveryCreate":
        if self.kind == DeliveryKind.FILE:
            self.link_type = None
        elif self.link_type is None:
            self.link_type = LinkType.OTHER
        return self
