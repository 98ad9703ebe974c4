"""
Tests for the work item lifecycle state machine.

Verifies:
- The transition table (pure)
- Every lifecycle operation either lands in an allowed state or fails with
  InvalidTransition and leaves the item untouched
- Ownership check on start, compare-and-swap on concurrent transitions
- Audit entries and hand-off notifications
"""

import pytest
from sqlalchemy.exc import DisconnectionError, OperationalError

from delivery_review.db.audit_service import AuditService
from delivery_review.engine.enums import WorkItemStatus
from delivery_review.engine.errors import InvalidTransition, NotAssignee, StorageUnavailable
from delivery_review.engine.services import WorkItemService
from delivery_review.engine.state_machine import (
    TRANSITIONS,
    can_transition,
    ensure_transition,
    is_terminal,
)

S = WorkItemStatus
NON_TERMINAL = [s for s in S if s not in (S.COMPLETED, S.CANCELLED)]


class TestTransitionTable:
    """Tests for the pure transition table."""

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(S)

    @pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED])
    def test_terminal_statuses_have_no_exits(self, status):
        assert is_terminal(status)
        assert TRANSITIONS[status] == frozenset()

    @pytest.mark.parametrize("status", NON_TERMINAL)
    def test_cancel_reachable_from_every_open_status(self, status):
        assert can_transition(status, S.CANCELLED)

    def test_happy_path(self):
        path = [S.NEW, S.ACTIVE, S.REVIEW_ADMIN, S.REVIEW_CLIENT, S.COMPLETED]
        for current, target in zip(path, path[1:]):
            assert can_transition(current, target)

    def test_revision_loop(self):
        assert can_transition(S.REVIEW_CLIENT, S.REVISION_REQUESTED)
        assert can_transition(S.REVISION_REQUESTED, S.ACTIVE)
        assert not can_transition(S.REVISION_REQUESTED, S.REVIEW_CLIENT)

    def test_accepts_string_values(self):
        assert can_transition("active", "late")
        assert not can_transition("late", "active")

    def test_ensure_transition_raises_with_context(self):
        with pytest.raises(InvalidTransition) as exc_info:
            ensure_transition(S.COMPLETED, S.ACTIVE)

        error = exc_info.value
        assert error.current == "completed"
        assert error.requested == "active"
        assert error.to_dict()["error"] == "invalid_transition"
        assert "terminal" in error.message


# Status from which each operation is legal
OPERATIONS = {
    "start": {S.NEW},
    "submit_for_review": {S.ACTIVE, S.LATE},
    "admin_review": {S.REVIEW_ADMIN},
    "acknowledge_revision": {S.REVISION_REQUESTED},
    "cancel": set(NON_TERMINAL),
}


def _run(services, operation, item_id, producer, admin):
    work_items = services.work_items
    if operation == "start":
        return work_items.start(item_id, producer)
    if operation == "submit_for_review":
        return work_items.submit_for_review(item_id, producer)
    if operation == "admin_review":
        return work_items.admin_review(item_id, True, admin)
    if operation == "acknowledge_revision":
        return work_items.acknowledge_revision(item_id, producer)
    return work_items.cancel(item_id, admin, reason="client withdrew")


class TestLifecycleClosure:
    """Every operation from every status ends in the table or changes nothing."""

    @pytest.mark.parametrize("operation", sorted(OPERATIONS))
    @pytest.mark.parametrize("status", list(S))
    def test_operation_from_status(
        self, services, make_work_item, deliver, force_status, producer, admin, operation, status
    ):
        item = make_work_item(manifest_summary="[1x Post]")
        deliver(item.id, "Post 1")
        item = force_status(item.id, status)
        before = item.to_dict()

        if status in OPERATIONS[operation]:
            result = _run(services, operation, item.id, producer, admin)
            assert can_transition(status, result.status)
        else:
            with pytest.raises(InvalidTransition):
                _run(services, operation, item.id, producer, admin)
            services.db.expire_all()
            after = services.work_items.get(item.id).to_dict()
            assert after == before


class TestStart:
    """Tests for WorkItemService.start()."""

    def test_start_sets_active_and_timer(self, make_work_item, clock):
        item = make_work_item()

        assert item.status == "active"
        assert item.to_dict()["started_at"] == clock.now().isoformat()

    def test_start_requires_assignee(self, services, make_work_item, admin):
        item = make_work_item(start=False)

        with pytest.raises(NotAssignee):
            services.work_items.start(item.id, admin)

        assert services.work_items.get(item.id).status == "new"

    def test_start_requires_assignment(self, services, make_work_item, producer):
        item = make_work_item(start=False, assigned_to=None)

        with pytest.raises(NotAssignee):
            services.work_items.start(item.id, producer)

    def test_start_twice_fails_and_keeps_timer(self, services, make_work_item, producer, clock):
        item = make_work_item()
        started_at = item.started_at
        clock.advance(minutes=5)

        with pytest.raises(InvalidTransition):
            services.work_items.start(item.id, producer)

        assert services.work_items.get(item.id).started_at == started_at


class TestSubmitForReview:
    """Tests for WorkItemService.submit_for_review()."""

    def test_requires_a_delivery(self, services, make_work_item, producer):
        item = make_work_item()

        with pytest.raises(InvalidTransition) as exc_info:
            services.work_items.submit_for_review(item.id, producer)

        assert "no delivery" in exc_info.value.message

    def test_old_deliveries_do_not_count(
        self, services, make_work_item, deliver, producer, clock
    ):
        item = make_work_item()
        deliver(item.id)
        clock.advance(minutes=1)
        services.work_items.submit_for_review(item.id, producer)
        services.work_items.admin_review(item.id, False, producer, notes="Too dark")
        clock.advance(minutes=1)
        services.work_items.acknowledge_revision(item.id, producer)

        with pytest.raises(InvalidTransition):
            services.work_items.submit_for_review(item.id, producer)

        clock.advance(minutes=1)
        deliver(item.id)
        item = services.work_items.submit_for_review(item.id, producer)
        assert item.status == "review_admin"

    def test_late_item_can_be_submitted(
        self, services, make_work_item, deliver, force_status, producer
    ):
        item = make_work_item()
        deliver(item.id)
        force_status(item.id, S.LATE)

        item = services.work_items.submit_for_review(item.id, producer)

        assert item.status == "review_admin"


class TestAdminReview:
    """Tests for WorkItemService.admin_review()."""

    @pytest.fixture
    def in_review(self, services, make_work_item, deliver, producer):
        def _in_review(**fields):
            item = make_work_item(**fields)
            deliver(item.id)
            return services.work_items.submit_for_review(item.id, producer)

        return _in_review

    def test_approve_forwards_to_client(self, services, in_review, admin):
        item = in_review()

        item = services.work_items.admin_review(item.id, True, admin)

        assert item.status == "review_client"
        assert item.completed_at is None

    def test_approve_completes_without_client_review(self, services, in_review, admin, clock):
        item = in_review(requires_client_review=False)

        item = services.work_items.admin_review(item.id, True, admin)

        assert item.status == "completed"
        assert item.to_dict()["completed_at"] == clock.now().isoformat()

    def test_reject_counts_one_revision(self, services, in_review, admin):
        item = in_review()

        item = services.work_items.admin_review(item.id, False, admin, notes="Wrong font")

        assert item.status == "revision_requested"
        assert item.revision_count == 1

    def test_retried_reject_does_not_double_count(self, services, in_review, admin):
        item = in_review()
        services.work_items.admin_review(item.id, False, admin)

        with pytest.raises(InvalidTransition):
            services.work_items.admin_review(item.id, False, admin)

        assert services.work_items.get(item.id).revision_count == 1


class TestAcknowledgeAndCancel:
    """Tests for acknowledge_revision() and cancel()."""

    def test_acknowledge_restarts_timer(
        self, services, make_work_item, force_status, producer, clock
    ):
        item = make_work_item()
        force_status(item.id, S.REVISION_REQUESTED)
        clock.advance(hours=3)

        item = services.work_items.acknowledge_revision(item.id, producer)

        assert item.status == "active"
        assert item.to_dict()["started_at"] == clock.now().isoformat()

    def test_cancel_is_terminal(self, services, make_work_item, admin, producer):
        item = make_work_item()
        services.work_items.cancel(item.id, admin, reason="budget cut")

        with pytest.raises(InvalidTransition):
            services.work_items.cancel(item.id, admin)
        with pytest.raises(InvalidTransition):
            services.work_items.submit_for_review(item.id, producer)


class TestConcurrentTransitions:
    """Compare-and-swap keeps racing transitions from both succeeding."""

    def test_stale_reader_loses(self, session_factory, services, make_work_item, clock, producer):
        item = make_work_item(start=False)

        other_session = session_factory()
        try:
            stale = WorkItemService(other_session, clock=clock)
            assert stale.get(item.id).status == "new"

            services.work_items.start(item.id, producer)

            # other_session still sees "new" in its identity map
            with pytest.raises(InvalidTransition) as exc_info:
                stale.start(item.id, producer)
            assert exc_info.value.current == "active"
        finally:
            other_session.close()

        audit = AuditService(services.db)
        changes = [
            e for e in audit.query_by_entity("WorkItem", item.id) if e.action == "status_changed"
        ]
        assert len(changes) == 1


class TestStorageFailures:
    """Storage errors roll the whole transition back."""

    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("COMMIT", {}, Exception("database is locked")),
            DisconnectionError("connection dropped"),
        ],
    )
    def test_failed_commit_rolls_back(
        self, services, make_work_item, producer, notifier, monkeypatch, error
    ):
        item = make_work_item(start=False)

        def broken_commit():
            raise error

        monkeypatch.setattr(services.db, "commit", broken_commit)
        with pytest.raises(StorageUnavailable):
            services.work_items.start(item.id, producer)
        monkeypatch.undo()

        services.db.expire_all()
        assert services.work_items.get(item.id).status == "new"
        assert services.work_items.get(item.id).started_at is None
        actions = [e.action for e in AuditService(services.db).query_by_entity("WorkItem", item.id)]
        assert actions == ["created"]
        assert notifier.events == []

    def test_other_errors_propagate_unchanged(
        self, services, make_work_item, admin, notifier, monkeypatch
    ):
        item = make_work_item()

        def broken_commit():
            raise RuntimeError("boom")

        monkeypatch.setattr(services.db, "commit", broken_commit)
        with pytest.raises(RuntimeError):
            services.work_items.cancel(item.id, admin)
        monkeypatch.undo()

        services.db.expire_all()
        assert services.work_items.get(item.id).status == "active"
        assert notifier.events == []


class TestTransitionSideEffects:
    """Audit trail and notifications."""

    def test_status_changes_are_audited(self, services, make_work_item, producer, admin, clock):
        item = make_work_item(start=False)
        clock.advance(seconds=1)
        services.work_items.start(item.id, producer)
        clock.advance(seconds=1)
        services.work_items.cancel(item.id, admin, reason="duplicate order")

        entries = AuditService(services.db).query_by_entity("WorkItem", item.id)
        actions = [(e.action, e.after) for e in reversed(entries)]

        assert actions[0][0] == "created"
        assert ("status_changed", {"status": "active"}) in actions
        assert actions[-1] == ("status_changed", {"status": "cancelled"})
        assert entries[0].note == "duplicate order"
        assert entries[0].actor_id == "admin-1"

    def test_handoffs_notify(self, services, make_work_item, deliver, producer, notifier):
        item = make_work_item()
        assert notifier.events == []  # starting is not a hand-off

        deliver(item.id)
        services.work_items.submit_for_review(item.id, producer)

        assert [e.event for e in notifier.events] == ["review_admin"]
        assert notifier.events[0].details == {"from": "active"}

    def test_revision_notifies_producer(self, services, make_work_item, force_status, admin, notifier):
        item = make_work_item()
        force_status(item.id, S.REVIEW_ADMIN)

        services.work_items.admin_review(item.id, False, admin)

        event = notifier.events[-1]
        assert event.event == "revision_requested"
        assert event.recipient_id == "producer-1"

    def test_failing_notifier_does_not_fail_transition(self, db_session, clock, make_work_item, admin):
        class Broken:
            def notify(self, event):
                raise RuntimeError("smtp down")

        item = make_work_item()
        service = WorkItemService(db_session, clock=clock, notifier=Broken())

        item = service.cancel(item.id, admin)

        assert item.status == "cancelled"

    def test_updated_at_moves(self, services, make_work_item, admin, clock):
        item = make_work_item()
        clock.advance(minutes=1)

        item = services.work_items.cancel(item.id, admin)

        assert item.to_dict()["updated_at"] == clock.now().isoformat()
