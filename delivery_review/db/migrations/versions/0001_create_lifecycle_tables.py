"""Create lifecycle tables

Revision ID: 0001_lifecycle
Revises:
Create Date: 2026-10-18

Creates work_items, deliveries, review_links, feedback and audit_log.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_lifecycle"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "work_items",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "kind",
            sa.Enum("video", "design", name="work_item_kind"),
            nullable=False,
        ),
        sa.Column("trace_id", sa.String(length=36), nullable=True),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assigned_to", sa.String(length=128), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "new",
                "active",
                "late",
                "review_admin",
                "review_client",
                "revision_requested",
                "completed",
                "cancelled",
                name="work_item_status",
            ),
            nullable=False,
        ),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("allowed_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("revision_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_sub_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "requires_client_review", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("manifest", sa.JSON(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_work_items_kind", "work_items", ["kind"])
    op.create_index("ix_work_items_trace_id", "work_items", ["trace_id"])
    op.create_index("ix_work_items_assigned_to", "work_items", ["assigned_to"])
    op.create_index("ix_work_items_status", "work_items", ["status"])
    op.create_index("ix_work_items_status_started", "work_items", ["status", "started_at"])
    op.create_index("ix_work_items_assignee_status", "work_items", ["assigned_to", "status"])

    op.create_table(
        "deliveries",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "work_item_id",
            sa.String(length=36),
            sa.ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sub_item_label", sa.String(length=128), nullable=True),
        sa.Column(
            "kind",
            sa.Enum("file", "external_link", name="delivery_kind"),
            nullable=False,
        ),
        sa.Column("payload_ref", sa.String(length=2000), nullable=False),
        sa.Column(
            "link_type",
            sa.Enum("drive", "frame", "dropbox", "other", name="delivery_link_type"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("submitted_by", sa.String(length=128), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.UniqueConstraint(
            "work_item_id", "version_number", name="uq_deliveries_item_version"
        ),
    )
    op.create_index("ix_deliveries_work_item_id", "deliveries", ["work_item_id"])
    op.create_index("ix_deliveries_sub_item_label", "deliveries", ["sub_item_label"])
    op.create_index("ix_deliveries_submitted_at", "deliveries", ["submitted_at"])
    op.create_index(
        "ix_deliveries_item_label_submitted",
        "deliveries",
        ["work_item_id", "sub_item_label", "submitted_at"],
    )
    op.create_index(
        "uq_deliveries_idempotency",
        "deliveries",
        ["work_item_id", sa.text("coalesce(sub_item_label, '')"), "idempotency_key"],
        unique=True,
    )

    op.create_table(
        "review_links",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column(
            "work_item_id",
            sa.String(length=36),
            sa.ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "delivery_id",
            sa.String(length=36),
            sa.ForeignKey("deliveries.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_review_links_token", "review_links", ["token"], unique=True)
    op.create_index("ix_review_links_work_item_id", "review_links", ["work_item_id"])
    op.create_index("ix_review_links_delivery_id", "review_links", ["delivery_id"])
    op.create_index("ix_review_links_is_active", "review_links", ["is_active"])
    op.create_index(
        "ix_review_links_target_active",
        "review_links",
        ["work_item_id", "delivery_id", "is_active"],
    )

    op.create_table(
        "feedback",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "work_item_id",
            sa.String(length=36),
            sa.ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "delivery_id",
            sa.String(length=36),
            sa.ForeignKey("deliveries.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "review_link_id",
            sa.String(length=36),
            sa.ForeignKey("review_links.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("sub_item_label", sa.String(length=128), nullable=True),
        sa.Column(
            "decision",
            sa.Enum("approved", "revision_requested", name="feedback_decision"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("feedback_text", sa.Text(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=True),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("actor_role", sa.String(length=32), nullable=False),
        sa.Column("reviewed_by", sa.String(length=256), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_feedback_work_item_id", "feedback", ["work_item_id"])
    op.create_index("ix_feedback_review_link_id", "feedback", ["review_link_id"])
    op.create_index("ix_feedback_decision", "feedback", ["decision"])
    op.create_index("ix_feedback_reviewed_at", "feedback", ["reviewed_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("actor_role", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "created", "updated", "status_changed", "deleted",
                name="audit_action",
            ),
            nullable=False,
        ),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("trace_id", sa.String(length=36), nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity_kind", "audit_log", ["entity_kind"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_trace_id", "audit_log", ["trace_id"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index("ix_audit_log_actor", "audit_log", ["actor_role", "actor_id"])
    op.create_index(
        "ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"]
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("feedback")
    op.drop_table("review_links")
    op.drop_table("deliveries")
    op.drop_table("work_items")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in (
            "audit_action",
            "feedback_decision",
            "delivery_link_type",
            "delivery_kind",
            "work_item_status",
            "work_item_kind",
        ):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
