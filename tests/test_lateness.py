"""
Tests for derived lateness and the late reconciliation job.
"""

from datetime import datetime, timedelta, timezone

import pytest

from delivery_review.engine.enums import WorkItemKind, WorkItemStatus
from delivery_review.engine.jobs import find_overrun_items, reconcile_late_items
from delivery_review.engine.lateness import is_late, time_remaining

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)
S = WorkItemStatus


class TestIsLate:
    """Tests for the pure is_late() rules."""

    @pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED])
    def test_closed_items_are_never_late(self, status):
        long_ago = NOW - timedelta(days=30)
        assert not is_late(status, long_ago, long_ago, 10, NOW)

    def test_late_status_is_late(self):
        assert is_late(S.LATE, None, None, None, NOW)

    def test_active_timer_overrun(self):
        started = NOW - timedelta(minutes=301)
        assert is_late(S.ACTIVE, None, started, 300, NOW)

    def test_active_timer_exactly_used_up_is_not_late(self):
        started = NOW - timedelta(minutes=300)
        assert not is_late(S.ACTIVE, None, started, 300, NOW)

    def test_timer_only_applies_while_active(self):
        started = NOW - timedelta(hours=10)
        assert not is_late(S.REVIEW_CLIENT, None, started, 60, NOW)

    def test_untimed_item_uses_deadline(self):
        assert is_late(S.REVIEW_ADMIN, NOW - timedelta(seconds=1), None, None, NOW)
        assert not is_late(S.REVIEW_ADMIN, NOW + timedelta(seconds=1), None, None, NOW)

    def test_deadline_applies_to_new_items(self):
        assert is_late(S.NEW, NOW - timedelta(days=1), None, None, NOW)

    def test_no_deadline_no_timer(self):
        assert not is_late(S.ACTIVE, None, None, None, NOW)

    def test_naive_datetimes_are_utc(self):
        naive_started = (NOW - timedelta(minutes=90)).replace(tzinfo=None)
        assert is_late("active", None, naive_started, 60, NOW)
        assert not is_late("active", None, naive_started, 120, NOW.replace(tzinfo=None))

    def test_time_remaining(self):
        started = NOW - timedelta(minutes=30)

        assert time_remaining(started, 60, NOW) == timedelta(minutes=30)
        assert time_remaining(started, 10, NOW) == timedelta(minutes=-20)
        assert time_remaining(None, 60, NOW) is None


class TestWorkItemLateness:
    """WorkItemService derives lateness on read and never stores it."""

    def test_video_gets_default_duration(self, make_work_item):
        item = make_work_item(kind=WorkItemKind.VIDEO)

        assert item.allowed_duration_minutes == 300

    def test_design_is_untimed_by_default(self, make_work_item):
        item = make_work_item(kind=WorkItemKind.DESIGN)

        assert item.allowed_duration_minutes is None

    def test_becomes_late_as_time_passes(self, services, make_work_item, clock):
        item = make_work_item(kind=WorkItemKind.VIDEO)
        assert not services.work_items.is_late(item.id)

        clock.advance(minutes=301)

        assert services.work_items.is_late(item.id)
        assert services.work_items.get(item.id).status == "active"

    def test_view_reports_remaining_time(self, services, make_work_item, clock):
        item = make_work_item(allowed_duration_minutes=60)
        clock.advance(minutes=45)

        view = services.work_items.view(item)

        assert view["is_late"] is False
        assert view["time_remaining_seconds"] == 15 * 60

    def test_explicit_now(self, services, make_work_item, clock):
        item = make_work_item(deadline=clock.now() + timedelta(days=1))

        assert not services.work_items.is_late(item.id)
        assert services.work_items.is_late(item.id, now=clock.now() + timedelta(days=2))


class TestReconcileLateItems:
    """Tests for the reconciliation job."""

    def test_marks_overrun_items(self, db_session, make_work_item, clock, notifier):
        overrun = make_work_item(allowed_duration_minutes=60)
        on_time = make_work_item(allowed_duration_minutes=600)
        make_work_item(start=False, deadline=clock.now() - timedelta(hours=1))
        clock.advance(hours=2)

        marked = reconcile_late_items(db_session, clock=clock, notifier=notifier)

        assert marked == [overrun.id]
        db_session.expire_all()
        assert db_session.get(type(overrun), overrun.id).status == "late"
        assert db_session.get(type(on_time), on_time.id).status == "active"
        assert [(e.event, e.recipient_id) for e in notifier.events] == [("late", "producer-1")]

    def test_second_run_is_noop(self, db_session, make_work_item, clock, notifier):
        make_work_item(allowed_duration_minutes=1)
        clock.advance(minutes=2)

        assert len(reconcile_late_items(db_session, clock=clock, notifier=notifier)) == 1
        assert reconcile_late_items(db_session, clock=clock, notifier=notifier) == []

    def test_dry_run_changes_nothing(self, db_session, make_work_item, clock):
        item = make_work_item(allowed_duration_minutes=1)
        clock.advance(minutes=2)

        assert reconcile_late_items(db_session, clock=clock, dry_run=True) == [item.id]
        assert [i.id for i in find_overrun_items(db_session, clock)] == [item.id]
        db_session.expire_all()
        assert db_session.get(type(item), item.id).status == "active"

    def test_late_item_can_still_be_submitted(
        self, services, db_session, make_work_item, deliver, clock, producer
    ):
        item = make_work_item(allowed_duration_minutes=1)
        clock.advance(minutes=2)
        reconcile_late_items(db_session, clock=clock)

        deliver(item.id)
        item = services.work_items.submit_for_review(item.id, producer)

        assert item.status == "review_admin"
        assert services.work_items.is_late(item.id) is False
