"""
Tests for delivery submission.
"""

import pytest
from pydantic import ValidationError

from delivery_review.db.audit_service import AuditService
from delivery_review.engine.delivery import DeliveryCreate
from delivery_review.engine.enums import DeliveryKind, WorkItemStatus
from delivery_review.engine.errors import InvalidTransition, NotFound

S = WorkItemStatus


class TestSubmit:
    """Tests for DeliveryService.submit()."""

    def test_versions_increase_per_work_item(self, make_work_item, deliver):
        item = make_work_item(manifest_summary="[2x Post]")
        other = make_work_item()

        versions = [
            deliver(item.id, "Post 1").version_number,
            deliver(item.id, "Post 2").version_number,
            deliver(other.id).version_number,
            deliver(item.id, "Post 1").version_number,
        ]

        assert versions == [1, 2, 1, 3]

    def test_records_submission(self, make_work_item, deliver, clock):
        item = make_work_item()

        delivery = deliver(item.id, "Post 1", notes="Final cut")

        data = delivery.to_dict()
        assert data["submitted_by"] == "producer-1"
        assert data["submitted_at"] == clock.now().isoformat()
        assert data["delivery_kind"] == "file"
        assert data["link_type"] is None
        assert data["notes"] == "Final cut"

    def test_external_link_defaults_to_other(self, make_work_item, deliver):
        item = make_work_item()

        delivery = deliver(
            item.id, kind=DeliveryKind.EXTERNAL_LINK, payload_ref="https://example.com/cut"
        )

        assert delivery.link_type == "other"

    def test_file_never_has_link_type(self, producer):
        data = DeliveryCreate(
            kind="file", payload_ref="uploads/a.png", link_type="drive", actor=producer
        )

        assert data.link_type is None

    def test_payload_required(self, producer):
        with pytest.raises(ValidationError):
            DeliveryCreate(kind="file", payload_ref="", actor=producer)

    @pytest.mark.parametrize("status", [S.NEW, S.COMPLETED, S.CANCELLED])
    def test_refused_outside_production(self, make_work_item, deliver, force_status, status):
        item = make_work_item(start=False)
        force_status(item.id, status)

        with pytest.raises(InvalidTransition):
            deliver(item.id)

    @pytest.mark.parametrize("status", [S.LATE, S.REVIEW_ADMIN, S.REVIEW_CLIENT, S.REVISION_REQUESTED])
    def test_accepted_during_review(self, make_work_item, deliver, force_status, status):
        item = make_work_item()
        force_status(item.id, status)

        assert deliver(item.id).version_number == 1

    def test_unknown_work_item(self, deliver):
        with pytest.raises(NotFound):
            deliver("missing")

    def test_submission_is_audited(self, services, make_work_item, deliver):
        item = make_work_item()

        delivery = deliver(item.id)

        entries = AuditService(services.db).query_by_entity("Delivery", delivery.id)
        assert [e.action for e in entries] == ["created"]
        assert entries[0].after["version_number"] == 1


class TestIdempotency:
    """Retries with the same idempotency key return the original delivery."""

    def test_retry_returns_original(self, services, make_work_item, deliver, clock):
        item = make_work_item()
        first = deliver(item.id, "Post 1", idempotency_key="upload-7f3a")
        clock.advance(seconds=5)

        retry = deliver(item.id, "Post 1", idempotency_key="upload-7f3a")

        assert retry.id == first.id
        assert len(services.deliveries.list_for_work_item(item.id)) == 1

    def test_whole_item_key(self, services, make_work_item, deliver):
        item = make_work_item()
        first = deliver(item.id, idempotency_key="k1")

        assert deliver(item.id, idempotency_key="k1").id == first.id

    def test_racing_whole_item_retry(self, services, make_work_item, deliver, monkeypatch):
        item = make_work_item()
        first = deliver(item.id, idempotency_key="k1")

        # The retry misses the pre-insert lookup, as if both requests raced it
        lookup = services.deliveries._find_by_idempotency_key
        calls = []

        def racing_lookup(work_item_id, data):
            calls.append(work_item_id)
            return None if len(calls) == 1 else lookup(work_item_id, data)

        monkeypatch.setattr(services.deliveries, "_find_by_idempotency_key", racing_lookup)

        retry = deliver(item.id, idempotency_key="k1")

        assert retry.id == first.id
        assert len(calls) == 2
        assert len(services.deliveries.list_for_work_item(item.id)) == 1

    def test_key_scoped_to_label(self, make_work_item, deliver):
        item = make_work_item(manifest_summary="[2x Post]")

        first = deliver(item.id, "Post 1", idempotency_key="k1")
        second = deliver(item.id, "Post 2", idempotency_key="k1")

        assert first.id != second.id

    def test_without_key_every_call_creates(self, services, make_work_item, deliver):
        item = make_work_item()

        deliver(item.id)
        deliver(item.id)

        assert [d.version_number for d in services.deliveries.list_for_work_item(item.id)] == [2, 1]
