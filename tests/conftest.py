"""Test configuration and fixtures."""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from delivery_review.db import Base
from delivery_review.db.models import WorkItemModel
from delivery_review.engine.clock import FixedClock
from delivery_review.engine.delivery import DeliveryCreate
from delivery_review.engine.enums import ActorRole, DeliveryKind
from delivery_review.engine.notifications import RecordingNotifier
from delivery_review.engine.primitives import Actor
from delivery_review.engine.services import (
    BatchService,
    DeliveryService,
    FeedbackService,
    ReviewLinkService,
    WorkItemService,
)
from delivery_review.engine.work_item import WorkItemCreate

START = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Create a fresh in-memory database for each test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def producer() -> Actor:
    return Actor(actor_id="producer-1", role=ActorRole.PRODUCER, display="Pat Producer")


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def reviewer() -> Actor:
    return Actor(actor_id="client-1", role=ActorRole.CLIENT, display="Casey Client")


@pytest.fixture
def services(db_session, clock, notifier):
    """All engine services bound to one session, clock and notifier."""
    wiring = {"clock": clock, "notifier": notifier}
    return SimpleNamespace(
        db=db_session,
        work_items=WorkItemService(db_session, **wiring),
        deliveries=DeliveryService(db_session, **wiring),
        batches=BatchService(db_session, **wiring),
        feedback=FeedbackService(db_session, **wiring),
        links=ReviewLinkService(db_session, **wiring),
    )


@pytest.fixture
def make_work_item(services, producer, admin):
    """Create a work item assigned to ``producer``, started by default."""

    def _make(start: bool = True, **fields) -> WorkItemModel:
        fields.setdefault("title", "Spring campaign")
        fields.setdefault("assigned_to", producer.actor_id)
        item = services.work_items.create(WorkItemCreate(**fields), admin)
        if start:
            item = services.work_items.start(item.id, producer)
        return item

    return _make


@pytest.fixture
def deliver(services, producer):
    """Submit a delivery for a sub-item label."""

    def _deliver(work_item_id, label=None, kind=DeliveryKind.FILE, payload_ref=None, **fields):
        data = DeliveryCreate(
            sub_item_label=label,
            kind=kind,
            payload_ref=payload_ref or f"uploads/{(label or 'item').replace(' ', '-')}.png",
            actor=producer,
            **fields,
        )
        return services.deliveries.submit(work_item_id, data)

    return _deliver


@pytest.fixture
def force_status(db_session):
    """Put a work item into ``status`` directly, bypassing the state machine."""

    def _force(work_item_id, status, **values):
        db_session.execute(
            update(WorkItemModel)
            .where(WorkItemModel.id == work_item_id)
            .values(status=getattr(status, "value", status), **values)
        )
        db_session.commit()
        return db_session.get(WorkItemModel, work_item_id)

    return _force
