"""Initial inventory counting workflow schema

Revision ID: 20261019_inventory_workflow
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_inventory_workflow"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, updated: bool = False):
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return columns


def upgrade():
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_locations_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_locations_code", "locations", ["code"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="user"),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_username", "users", ["username"])
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_location_id", "users", ["location_id"])
    op.create_index("ix_users_location_role", "users", ["location_id", "role"])

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"])
    op.create_index("ix_session_tokens_is_revoked", "session_tokens", ["is_revoked"])
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("document_type", "year", name="uq_doc_sequences_type_year"),
    )
    op.create_index("ix_document_sequences_document_type", "document_sequences", ["document_type"])

    op.create_table(
        "inventory_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("request_number", sa.String(length=32), nullable=False),
        sa.Column("request_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("location_ids", sa.JSON(), nullable=False),
        sa.Column("filter_divisions", sa.JSON(), nullable=True),
        sa.Column("filter_categories", sa.JSON(), nullable=True),
        sa.Column("filter_groups", sa.JSON(), nullable=True),
        sa.Column("filter_specific_codes", sa.JSON(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("attachment_files", sa.JSON(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(updated=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("request_number", name="uq_inventory_requests_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_requests_status", "inventory_requests", ["status"])
    op.create_index("ix_inventory_requests_created_by", "inventory_requests", ["created_by"])
    op.create_index("ix_inventory_requests_status_created", "inventory_requests", ["status", "created_at"])

    op.create_table(
        "inventory_count_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "request_id",
            sa.Integer(),
            sa.ForeignKey("inventory_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("item_code", sa.String(length=64), nullable=False),
        sa.Column("item_description", sa.String(length=255), nullable=True),
        sa.Column("item_description2", sa.String(length=255), nullable=True),
        sa.Column("division_code", sa.String(length=32), nullable=True),
        sa.Column("division_name", sa.String(length=120), nullable=True),
        sa.Column("category_code", sa.String(length=32), nullable=True),
        sa.Column("category_name", sa.String(length=120), nullable=True),
        sa.Column("group_code", sa.String(length=32), nullable=True),
        sa.Column("group_name", sa.String(length=120), nullable=True),
        sa.Column("subgroup_code", sa.String(length=32), nullable=True),
        sa.Column("subgroup_name", sa.String(length=120), nullable=True),
        sa.Column("brand_code", sa.String(length=32), nullable=True),
        sa.Column("brand_name", sa.String(length=120), nullable=True),
        sa.Column("unit_measure_code", sa.String(length=16), nullable=True),
        sa.Column("system_inventory", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("physical_count", sa.Integer(), nullable=True),
        sa.Column("difference", sa.Integer(), nullable=True),
        sa.Column("adjustment_type", sa.String(length=16), nullable=True),
        sa.Column("cost_impact_cents", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("counted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("counted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("audited_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("audited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("adjusted_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("adjusted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("counter_comment", sa.Text(), nullable=True),
        sa.Column("manager_comment", sa.Text(), nullable=True),
        sa.Column("auditor_comment", sa.Text(), nullable=True),
        sa.Column("coordinator_comment", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(updated=True),
        sa.UniqueConstraint(
            "request_id", "location_id", "item_code", name="uq_count_items_request_location_item"
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_count_items_request_id", "inventory_count_items", ["request_id"])
    op.create_index("ix_inventory_count_items_location_id", "inventory_count_items", ["location_id"])
    op.create_index("ix_inventory_count_items_division_code", "inventory_count_items", ["division_code"])
    op.create_index("ix_inventory_count_items_status", "inventory_count_items", ["status"])
    op.create_index("ix_count_items_location_status", "inventory_count_items", ["location_id", "status"])
    op.create_index("ix_count_items_assignee_status", "inventory_count_items", ["assigned_to", "status"])
    op.create_index("ix_count_items_request_division", "inventory_count_items", ["request_id", "division_code"])

    op.create_table(
        "inventory_assignment_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rule_type", sa.String(length=16), nullable=False),
        sa.Column("values", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(updated=True),
        sa.UniqueConstraint("location_id", "user_id", "rule_type", name="uq_assignment_rules_location_user_type"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_assignment_rules_location_id", "inventory_assignment_rules", ["location_id"])
    op.create_index("ix_inventory_assignment_rules_user_id", "inventory_assignment_rules", ["user_id"])

    op.create_table(
        "inventory_audit_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_number", sa.String(length=32), nullable=False),
        sa.Column("auditor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("inventory_requests.id"), nullable=True),
        sa.Column("sampling_type", sa.String(length=16), nullable=False),
        sa.Column("sampling_percentage", sa.Integer(), nullable=True),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sampled_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("approval_result", sa.String(length=16), nullable=True),
        sa.Column("result_comments", sa.Text(), nullable=True),
        sa.Column("mismatched_samples", sa.Integer(), nullable=True),
        sa.Column("decided_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("document_number", name="uq_audit_documents_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_audit_documents_auditor_id", "inventory_audit_documents", ["auditor_id"])
    op.create_index("ix_inventory_audit_documents_request_id", "inventory_audit_documents", ["request_id"])
    op.create_index("ix_inventory_audit_documents_status", "inventory_audit_documents", ["status"])
    op.create_index("ix_audit_documents_location_status", "inventory_audit_documents", ["location_id", "status"])

    op.create_table(
        "inventory_audit_samples",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "audit_document_id",
            sa.Integer(),
            sa.ForeignKey("inventory_audit_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("count_item_id", sa.Integer(), sa.ForeignKey("inventory_count_items.id"), nullable=False),
        sa.Column("audit_physical_count", sa.Integer(), nullable=True),
        sa.Column("audit_difference", sa.Integer(), nullable=True),
        sa.Column("matches_original", sa.Boolean(), nullable=True),
        sa.Column("approved", sa.Boolean(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("audited_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("audited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("audit_document_id", "count_item_id", name="uq_audit_samples_document_item"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_audit_samples_audit_document_id", "inventory_audit_samples", ["audit_document_id"])
    op.create_index("ix_inventory_audit_samples_count_item_id", "inventory_audit_samples", ["count_item_id"])

    op.create_table(
        "inventory_division_approvers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("division_code", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("division_code", "user_id", name="uq_division_approvers_division_user"),
    )
    op.create_index(
        "ix_inventory_division_approvers_division_code", "inventory_division_approvers", ["division_code"]
    )

    op.create_table(
        "inventory_adjustment_approvals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("inventory_requests.id"), nullable=False),
        sa.Column("division_code", sa.String(length=32), nullable=True),
        sa.Column("approver_ids", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("opened_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("decided_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_adjustment_approvals_request_id", "inventory_adjustment_approvals", ["request_id"])
    op.create_index("ix_inventory_adjustment_approvals_status", "inventory_adjustment_approvals", ["status"])
    op.create_index(
        "ix_adjustment_approvals_request_division",
        "inventory_adjustment_approvals",
        ["request_id", "division_code"],
    )

    op.create_table(
        "inventory_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_history_entity", "inventory_history", ["entity_type", "entity_id"])
    op.create_index("ix_inventory_history_action", "inventory_history", ["action"])
    op.create_index("ix_inventory_history_actor_user_id", "inventory_history", ["actor_user_id"])
    op.create_index("ix_inventory_history_occurred_at", "inventory_history", ["occurred_at"])


def downgrade():
    op.drop_table("inventory_history")
    op.drop_table("inventory_adjustment_approvals")
    op.drop_table("inventory_division_approvers")
    op.drop_table("inventory_audit_samples")
    op.drop_table("inventory_audit_documents")
    op.drop_table("inventory_assignment_rules")
    op.drop_table("inventory_count_items")
    op.drop_table("inventory_requests")
    op.drop_table("document_sequences")
    op.drop_table("session_tokens")
    op.drop_table("users")
    op.drop_table("locations")
