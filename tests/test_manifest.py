"""
Tests for the sub-item manifest.

Verifies:
- Legacy summary strings parse into ordered, labeled sub-items
- Explicit manifests are normalized and validated
- The manifest is stored once, at creation
"""

import pytest
from pydantic import ValidationError

from delivery_review.engine.work_item import (
    SubItemSpec,
    WorkItemCreate,
    build_manifest,
    parse_manifest_summary,
)


def _labels(items):
    return [item.label for item in items]


class TestParseManifestSummary:
    """Tests for parse_manifest_summary()."""

    def test_types_follow_display_order(self):
        items = parse_manifest_summary("[1x Post + 2x Miniature]")

        assert _labels(items) == ["Miniature 1", "Miniature 2", "Post 1"]
        assert [item.ordinal for item in items] == [1, 2, 3]

    def test_carousel_pages(self):
        items = parse_manifest_summary("[2x Miniature + 1x Carrousel 5p]")

        carousel = items[-1]
        assert carousel.label == "Carrousel 1"
        assert carousel.pages == 5
        assert items[0].pages is None

    def test_case_insensitive(self):
        items = parse_manifest_summary("[3x post]")

        assert _labels(items) == ["Post 1", "Post 2", "Post 3"]

    def test_repeated_types_add_up(self):
        items = parse_manifest_summary("[1x Post + 1x Post]")

        assert _labels(items) == ["Post 1", "Post 2"]

    def test_trailing_text_is_ignored(self):
        items = parse_manifest_summary("[1x Miniature] launch week, see brief")

        assert _labels(items) == ["Miniature 1"]

    @pytest.mark.parametrize(
        "summary",
        [None, "", "Edit the interview", "1x Post", "[Reels only]"],
    )
    def test_no_manifest(self, summary):
        assert parse_manifest_summary(summary) == []


class TestBuildManifest:
    """Tests for build_manifest()."""

    def test_labels_numbered_per_type(self):
        items = build_manifest(
            [SubItemSpec(type="Post"), SubItemSpec(type="Reel"), SubItemSpec(type="Post")]
        )

        assert _labels(items) == ["Post 1", "Reel 1", "Post 2"]

    def test_explicit_labels_and_ordinals(self):
        items = build_manifest(
            [
                SubItemSpec(type="Post", label="Cover", ordinal=2),
                SubItemSpec(type="Miniature", label="Thumb", ordinal=1),
            ]
        )

        assert _labels(items) == ["Thumb", "Cover"]

    def test_duplicate_labels_rejected(self):
        with pytest.raises(ValueError, match="Post 1"):
            build_manifest([SubItemSpec(type="Post"), SubItemSpec(type="Post", label="Post 1")])


class TestWorkItemCreateManifest:
    """Manifest handling on WorkItemCreate."""

    def test_explicit_manifest_wins(self):
        data = WorkItemCreate(
            title="Launch",
            manifest=[SubItemSpec(type="Miniature")],
            manifest_summary="[3x Post]",
        )

        assert _labels(data.resolved_manifest()) == ["Miniature 1"]

    def test_description_fallback(self):
        data = WorkItemCreate(title="Launch", description="[2x Post] for the spring drop")

        assert _labels(data.resolved_manifest()) == ["Post 1", "Post 2"]

    def test_duplicate_labels_fail_validation(self):
        with pytest.raises(ValidationError):
            WorkItemCreate(
                title="Launch",
                manifest=[SubItemSpec(type="Post", label="A"), SubItemSpec(type="Reel", label="A")],
            )

    def test_manifest_stored_at_creation(self, make_work_item):
        item = make_work_item(manifest_summary="[1x Miniature + 1x Carrousel 3p]")

        assert item.manifest == [
            {"type": "Miniature", "label": "Miniature 1", "ordinal": 1},
            {"type": "Carrousel", "label": "Carrousel 1", "ordinal": 2, "pages": 3},
        ]
        assert item.sub_item_labels == ["Miniature 1", "Carrousel 1"]
