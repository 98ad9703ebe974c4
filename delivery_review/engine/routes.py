"""
Delivery Review API Routes.

REST endpoints for the work item lifecycle, deliveries, review decisions and
review links. Engine errors are raised as-is and mapped to HTTP responses by
the application's exception handler.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import get_db
from .clock import Clock, SystemClock
from .delivery import DeliveryCreate
from .enums import ActorRole
from .feedback import BatchRef, DecisionCreate, LinkDecisionCreate
from .notifications import LoggingNotifier, Notifier
from .primitives import Actor
from .review_link import ReviewLinkIssue
from .services import (
    BatchService,
    DeliveryService,
    FeedbackService,
    ReviewLinkService,
    WorkItemService,
    reviewer_actor,
)
from .work_item import AdminReviewRequest, CancelRequest, TransitionRequest, WorkItemCreate

router = APIRouter(tags=["Delivery Review"])

_system_clock = SystemClock()
_default_notifier = LoggingNotifier()


def get_clock() -> Clock:
    """Time source dependency; overridden in tests."""
    return _system_clock


def get_notifier() -> Notifier:
    """Notifier dependency; overridden by the host application."""
    return _default_notifier


class _Services:
    """Per-request service bundle sharing one session, clock and notifier."""

    def __init__(
        self,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        notifier: Notifier = Depends(get_notifier),
    ):
        wiring = {"clock": clock, "notifier": notifier}
        self.work_items = WorkItemService(db, **wiring)
        self.deliveries = DeliveryService(db, **wiring)
        self.batches = BatchService(db, **wiring)
        self.feedback = FeedbackService(db, **wiring)
        self.links = ReviewLinkService(db, **wiring)


def _review_url(token: str) -> Optional[str]:
    base_url = get_settings().review_base_url
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/review/{token}"


# =============================================================================
# Work Item Endpoints
# =============================================================================


@router.post("/work-items", status_code=201)
async def create_work_item(
    work_item: WorkItemCreate,
    actor_id: str = Query("api", min_length=1),
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Create a new WorkItem."""
    actor = Actor(actor_id=actor_id, role=ActorRole.ADMIN)
    item = services.work_items.create(work_item, actor)
    return {
        "status": "success",
        "work_item": services.work_items.view(item),
    }


@router.get("/work-items/{work_item_id}")
async def get_work_item(
    work_item_id: str,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Get a WorkItem by ID, with derived lateness."""
    item = services.work_items.get(work_item_id)
    if not item:
        raise HTTPException(status_code=404, detail="WorkItem not found")

    return services.work_items.view(item)


@router.get("/work-items")
async def list_work_items(
    status: Optional[str] = None,
    assigned_to: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    services: _Services = Depends(),
) -> List[Dict[str, Any]]:
    """List WorkItems with optional filtering."""
    items = services.work_items.list(
        status=status, assigned_to=assigned_to, limit=limit, offset=offset
    )
    now = services.work_items.clock.now()
    return [services.work_items.view(item, now) for item in items]


@router.delete("/work-items/{work_item_id}")
async def delete_work_item(
    work_item_id: str,
    actor_id: str = Query("api", min_length=1),
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Delete a WorkItem and everything attached to it."""
    services.work_items.delete(
        work_item_id, Actor(actor_id=actor_id, role=ActorRole.ADMIN)
    )
    return {"status": "success", "deleted": work_item_id}


@router.get("/work-items/{work_item_id}/lateness")
async def get_lateness(
    work_item_id: str,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Derived lateness of a WorkItem at the current time."""
    item = services.work_items.require(work_item_id)
    view = services.work_items.view(item)
    return {
        "work_item_id": item.id,
        "status": item.status,
        "is_late": view["is_late"],
        "time_remaining_seconds": view["time_remaining_seconds"],
    }


# =============================================================================
# Lifecycle Transition Endpoints
# =============================================================================


@router.post("/work-items/{work_item_id}/start")
async def start_work_item(
    work_item_id: str,
    request: TransitionRequest,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Start work on a WorkItem (assignee only)."""
    item = services.work_items.start(work_item_id, request.actor)
    return {"status": "success", "work_item": services.work_items.view(item)}


@router.post("/work-items/{work_item_id}/submit")
async def submit_for_review(
    work_item_id: str,
    request: TransitionRequest,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Hand a WorkItem over for internal review."""
    item = services.work_items.submit_for_review(work_item_id, request.actor)
    return {"status": "success", "work_item": services.work_items.view(item)}


@router.post("/work-items/{work_item_id}/admin-review")
async def admin_review(
    work_item_id: str,
    request: AdminReviewRequest,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Approve or reject a WorkItem under internal review."""
    item = services.work_items.admin_review(
        work_item_id, request.approve, request.actor, notes=request.notes
    )
    return {"status": "success", "work_item": services.work_items.view(item)}


@router.post("/work-items/{work_item_id}/acknowledge")
async def acknowledge_revision(
    work_item_id: str,
    request: TransitionRequest,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Acknowledge a revision request and resume work."""
    item = services.work_items.acknowledge_revision(work_item_id, request.actor)
    return {"status": "success", "work_item": services.work_items.view(item)}


@router.post("/work-items/{work_item_id}/cancel")
async def cancel_work_item(
    work_item_id: str,
    request: CancelRequest,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Cancel a WorkItem."""
    item = services.work_items.cancel(work_item_id, request.actor, reason=request.reason)
    return {"status": "success", "work_item": services.work_items.view(item)}


# =============================================================================
# Delivery and Batch Endpoints
# =============================================================================


@router.post("/work-items/{work_item_id}/deliveries", status_code=201)
async def submit_delivery(
    work_item_id: str,
    delivery: DeliveryCreate,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Submit a file or external-link Delivery."""
    db_delivery = services.deliveries.submit(work_item_id, delivery)
    return {
        "status": "success",
        "delivery": db_delivery.to_dict(),
    }


@router.get("/work-items/{work_item_id}/deliveries")
async def list_deliveries(
    work_item_id: str,
    services: _Services = Depends(),
) -> List[Dict[str, Any]]:
    """List Deliveries of a WorkItem, newest version first."""
    services.work_items.require(work_item_id)
    return [d.to_dict() for d in services.deliveries.list_for_work_item(work_item_id)]


@router.get("/work-items/{work_item_id}/batches")
async def get_batches(
    work_item_id: str,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Current delivery batch and derived status of every sub-item."""
    batches = services.batches.get_batches(work_item_id)
    return {
        "work_item_id": work_item_id,
        "batches": [batch.to_dict() for batch in batches],
    }


@router.get("/work-items/{work_item_id}/batches/history")
async def get_batch_history(
    work_item_id: str,
    label: Optional[str] = None,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Every review round of one sub-item, newest first."""
    rounds = services.batches.history(work_item_id, label)
    return {
        "work_item_id": work_item_id,
        "label": label,
        "rounds": [batch.to_dict() for batch in rounds],
    }


# =============================================================================
# Feedback Endpoints
# =============================================================================


@router.post("/work-items/{work_item_id}/decisions", status_code=201)
async def apply_decision(
    work_item_id: str,
    decision: DecisionCreate,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Approve or request a revision of the current batch of a sub-item."""
    result = services.feedback.apply_decision(
        BatchRef(work_item_id=work_item_id, label=decision.label),
        decision.decision,
        decision.actor,
        notes=decision.notes,
        attachments=decision.attachments,
        feedback_text=decision.feedback_text,
        rating=decision.rating,
        reviewer_name=decision.reviewer_name,
    )
    return {"status": "success", **result.to_dict()}


@router.get("/work-items/{work_item_id}/feedback")
async def list_feedback(
    work_item_id: str,
    decision: Optional[str] = None,
    services: _Services = Depends(),
) -> List[Dict[str, Any]]:
    """List Feedback for a WorkItem, newest first."""
    services.work_items.require(work_item_id)
    return [
        f.to_dict()
        for f in services.feedback.list_for_work_item(work_item_id, decision=decision)
    ]


# =============================================================================
# Review Link Endpoints
# =============================================================================


@router.post("/review-links", status_code=201)
async def issue_review_link(
    request: ReviewLinkIssue,
    actor_id: str = Query("api", min_length=1),
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Issue a review link for a delivery or a whole WorkItem.

    The token is only returned here; later reads never expose it.
    """
    link = services.links.issue(
        request.work_item_id,
        delivery_id=request.delivery_id,
        ttl=timedelta(seconds=request.ttl_seconds) if request.ttl_seconds else None,
        supersede=request.supersede,
        actor=Actor(actor_id=actor_id, role=ActorRole.ADMIN),
    )
    return {
        "status": "success",
        "review_link": link.to_dict(include_token=True),
        "url": _review_url(link.token),
    }


@router.get("/work-items/{work_item_id}/review-links")
async def list_review_links(
    work_item_id: str,
    services: _Services = Depends(),
) -> List[Dict[str, Any]]:
    """List external review links of a WorkItem."""
    services.work_items.require(work_item_id)
    return [link.to_dict() for link in services.links.list_for_work_item(work_item_id)]


@router.post("/review-links/{link_id}/revoke")
async def revoke_review_link(
    link_id: str,
    actor_id: str = Query("api", min_length=1),
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Revoke a review link. Revoking twice is harmless."""
    link = services.links.revoke(link_id, Actor(actor_id=actor_id, role=ActorRole.ADMIN))
    return {"status": "success", "review_link": link.to_dict()}


@router.get("/review/{token}")
async def open_review(
    token: str,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Open a review link: counts one view and returns what it grants."""
    target = services.links.resolve(token)
    item = services.work_items.require(target.work_item_id)

    if target.is_project_link:
        batches = services.batches.get_batches(item.id)
    else:
        batches = [services.batches.get_batch(item.id, target.sub_item_label)]

    return {
        "target": target.to_dict(),
        "work_item": {
            "id": item.id,
            "title": item.title,
            "status": item.status,
            "work_item_kind": item.kind,
            "manifest": item.manifest or [],
        },
        "batches": [batch.to_dict() for batch in batches],
    }


@router.post("/review/{token}/decision", status_code=201)
async def decide_via_review_link(
    token: str,
    decision: LinkDecisionCreate,
    services: _Services = Depends(),
) -> Dict[str, Any]:
    """Submit a reviewer decision through a review link."""
    link = services.links.validate(token)
    target = services.links.target_for(link)

    label = decision.label
    if not target.is_project_link:
        if label is not None and label != target.sub_item_label:
            raise HTTPException(
                status_code=422,
                detail="This link only covers its own sub-item",
            )
        label = target.sub_item_label

    result = services.feedback.apply_decision(
        BatchRef(work_item_id=target.work_item_id, label=label),
        decision.decision,
        reviewer_actor(link, decision.reviewer_name),
        notes=decision.notes,
        attachments=decision.attachments,
        feedback_text=decision.feedback_text,
        rating=decision.rating,
        reviewer_name=decision.reviewer_name,
        review_link_id=link.id,
    )
    return {
        "status": "success",
        "feedback": result.feedback.to_dict(),
        "work_item_status": result.work_item.status,
    }
