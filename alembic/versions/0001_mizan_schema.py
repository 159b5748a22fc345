"""users, entitlement ledger, moderator roles and audit log

Revision ID: 0001_mizan_schema
Revises:
Create Date: 2026-10-12
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_mizan_schema"
down_revision = None
branch_labels = None
depends_on = None

ENTITLEMENT_SOURCES = ("provider_subscription", "manual_override", "redeemable_code")
MOD_ROLES = ("read_only", "full", "super_admin")
AUDIT_ACTIONS = (
    "grant_premium",
    "revoke_premium",
    "view_premium_history",
    "view_user_activity",
    "grant_mod_role",
    "revoke_mod_role",
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_subject_id", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("entitlement_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_external_subject_id", "users", ["external_subject_id"], unique=True)
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "user_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "entitlement_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("source", sa.Enum(*ENTITLEMENT_SOURCES, name="entitlement_source"), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("granted_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("external_reference", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_entitlement_records_user_id", "entitlement_records", ["user_id"])

    op.create_table(
        "grant_notices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("entitlement_record_id", sa.Integer(), sa.ForeignKey("entitlement_records.id"), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_grant_notices_user_id", "grant_notices", ["user_id"])

    op.create_table(
        "mod_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("role", sa.Enum(*MOD_ROLES, name="mod_role"), nullable=False),
        sa.Column("granted_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("target_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action_type", sa.Enum(*AUDIT_ACTIONS, name="audit_action"), nullable=False),
        sa.Column("before_snapshot", sa.JSON(), nullable=True),
        sa.Column("after_snapshot", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("network_origin", sa.String(length=64), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_log_actor_user_id", "audit_log", ["actor_user_id"])
    op.create_index("ix_audit_log_target_user_id", "audit_log", ["target_user_id"])

    op.create_table(
        "subscription_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("subscription_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_subscription_links_subscription_id", "subscription_links", ["subscription_id"], unique=True)
    op.create_index("ix_subscription_links_user_id", "subscription_links", ["user_id"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("subscription_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("entitlement_record_id", sa.Integer(), sa.ForeignKey("entitlement_records.id"), nullable=True),
        sa.Column("payload_hash", sa.String(length=64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payment_events_provider_event_id", "payment_events", ["provider_event_id"], unique=True)
    op.create_index("ix_payment_events_user_id", "payment_events", ["user_id"])

    op.create_table(
        "premium_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("created_for_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_premium_codes_code", "premium_codes", ["code"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_premium_codes_code", table_name="premium_codes")
    op.drop_table("premium_codes")
    op.drop_index("ix_payment_events_user_id", table_name="payment_events")
    op.drop_index("ix_payment_events_provider_event_id", table_name="payment_events")
    op.drop_table("payment_events")
    op.drop_index("ix_subscription_links_user_id", table_name="subscription_links")
    op.drop_index("ix_subscription_links_subscription_id", table_name="subscription_links")
    op.drop_table("subscription_links")
    op.drop_index("ix_audit_log_target_user_id", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_user_id", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_table("mod_roles")
    op.drop_index("ix_grant_notices_user_id", table_name="grant_notices")
    op.drop_table("grant_notices")
    op.drop_index("ix_entitlement_records_user_id", table_name="entitlement_records")
    op.drop_table("entitlement_records")
    op.drop_table("user_settings")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_external_subject_id", table_name="users")
    op.drop_table("users")
